"""
Configuration loader for the TLS interop matrix
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

from .scenarios import SCENARIO_IDS

DEFAULT_TEST_EXECUTION = {
    'host': 'localhost',
    # Long pole is a 256 GB download between two slow implementations
    'default_timeout': 7 * 60,
    'scenario_timeouts': {},
    'parallelism': None,
    'port_range': [9001, 9100],
    'readiness_timeout': 10,
    'peer_grace_period': 5,
    'poll_interval': 0.05,
    'log_dir': 'interop_logs',
}

DEFAULT_REPORTING = {
    'table': None,
    'json': None,
    'html': None,
}


class InteropConfig:
    """Load and manage the interop configuration from a YAML file"""

    def __init__(self, config_path: str = 'config.yaml'):
        """
        Initialize configuration loader

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(self.config_path) as f:
            data = yaml.safe_load(f) or {}

        self._load(data, base_dir=self.config_path.parent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[str] = None) -> 'InteropConfig':
        """Build a configuration without a file (relative paths resolve against ``base_dir``)"""
        config = cls.__new__(cls)
        config.config_path = None
        config._load(copy.deepcopy(data), base_dir=Path(base_dir or os.getcwd()))
        return config

    def _load(self, data: Dict[str, Any], base_dir: Path):
        self.config = data
        self.base_dir = base_dir

        execution = dict(DEFAULT_TEST_EXECUTION)
        execution.update(data.get('test_execution') or {})
        self.config['test_execution'] = execution

        reporting = dict(DEFAULT_REPORTING)
        reporting.update(data.get('reporting') or {})
        self.config['reporting'] = reporting

        self._load_implementations()
        self._validate_scenarios()

    def _load_implementations(self):
        """
        Normalize implementation entries

        Every implementation gets a display name and version; the ``client``
        and ``server`` commands are lists of arguments the adapter appends
        ``<scenario_id> <port>`` to.
        """
        impls = {}
        for name, cfg in (self.config.get('implementations') or {}).items():
            cfg = dict(cfg or {})
            cfg.setdefault('name', name)
            cfg.setdefault('version', '')
            cfg.setdefault('enabled', True)
            cfg.setdefault('readiness', 'probe')
            cfg.setdefault('startup_delay', 1.0)
            for role in ('client', 'server'):
                command = cfg.get(role)
                if isinstance(command, str):
                    cfg[role] = command.split()
            if cfg['readiness'] not in ('probe', 'delay'):
                raise ValueError(f"Implementation '{name}': readiness must be 'probe' or 'delay'")
            if not cfg.get('client') and not cfg.get('server'):
                raise ValueError(f"Implementation '{name}' defines neither a client nor a server command")
            impls[name] = cfg

        self.all_implementations = impls

    def _validate_scenarios(self):
        for scenario_id in self.config.get('scenarios') or []:
            if scenario_id not in SCENARIO_IDS:
                raise ValueError(f"Unknown scenario '{scenario_id}' in configuration")

    def get_implementation(self, name: str) -> Dict[str, Any]:
        """
        Get configuration for a specific implementation

        Args:
            name: Implementation key (e.g., 'tlslite-ng')

        Returns:
            Dictionary with implementation configuration

        Raises:
            ValueError: If implementation not found or disabled
        """
        impl = self.all_implementations.get(name)
        if not impl:
            raise ValueError(f"Implementation '{name}' not found in configuration")
        if not impl.get('enabled', True):
            raise ValueError(f"Implementation '{name}' is disabled")
        return impl

    def list_implementations(self, enabled_only: bool = True, role: str = None) -> List[str]:
        """
        List implementations in registration order

        Args:
            enabled_only: If True, only return enabled implementations
            role: 'client' or 'server' to keep only implementations with that command

        Returns:
            List of implementation names
        """
        impls = []
        for name, config in self.all_implementations.items():
            if enabled_only and not config.get('enabled', True):
                continue
            if role and not config.get(role):
                continue
            impls.append(name)
        return impls

    def list_clients(self) -> List[str]:
        return self.list_implementations(role='client')

    def list_servers(self) -> List[str]:
        return self.list_implementations(role='server')

    def get_command(self, name: str, role: str) -> List[str]:
        command = self.get_implementation(name).get(role)
        if not command:
            raise ValueError(f"Implementation '{name}' has no {role} command")
        return list(command)

    def get_working_dir(self, name: str) -> Path:
        """
        Directory an implementation runs in

        Trust material is looked up relative to the working directory, so the
        certificate directory is the default.
        """
        cwd = self.get_implementation(name).get('cwd')
        return self.resolve_path(cwd) if cwd else self.get_cert_dir()

    def get_cert_dir(self) -> Path:
        certs = self.config.get('certificates') or {}
        return self.resolve_path(certs.get('dir', 'certificates'))

    def get_enabled_scenarios(self) -> List[str]:
        """Enabled scenario ids, always in catalog order"""
        enabled = self.config.get('scenarios')
        if not enabled:
            return list(SCENARIO_IDS)
        return [s for s in SCENARIO_IDS if s in enabled]

    def get_test_execution_settings(self) -> Dict[str, Any]:
        """Get test execution settings"""
        return self.config['test_execution']

    def get_timeout(self, scenario_id: str) -> float:
        settings = self.get_test_execution_settings()
        return float(settings['scenario_timeouts'].get(scenario_id, settings['default_timeout']))

    def get_port_range(self) -> Tuple[int, int]:
        start, end = self.get_test_execution_settings()['port_range']
        return int(start), int(end)

    def get_parallelism(self) -> int:
        """
        Number of runs executed at once

        Large transfers saturate one core per endpoint, so the default is
        half the available cores.
        """
        parallelism = self.get_test_execution_settings().get('parallelism')
        if parallelism:
            return max(1, int(parallelism))
        return max(1, (os.cpu_count() or 2) // 2)

    def get_log_dir(self) -> Path:
        return self.resolve_path(self.get_test_execution_settings()['log_dir'])

    def get_reporting_settings(self) -> Dict[str, Any]:
        """Get reporting settings"""
        return self.config['reporting']

    def resolve_path(self, path) -> Path:
        path = Path(path)
        if path.is_absolute():
            return path
        return self.base_dir / path
