"""
TLS 1.3 Interoperability Matrix Framework

This package pairs every client implementation against every server
implementation for a fixed set of TLS 1.3 scenarios and records the outcome
of each run.
"""

__version__ = "1.0.0"
__all__ = ['config', 'errors', 'tagged_stream', 'scenarios', 'connection', 'executor',
           'endpoint', 'local_adapter', 'results', 'orchestrator', 'reports']
