"""
Run result data structures
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple


class OutcomeKind(Enum):
    """Run outcome category"""
    SUCCESS = "success"
    UNIMPLEMENTED = "unimplemented"
    FAILURE = "failure"
    TIMEOUT = "timeout"


SEVERITY = {
    OutcomeKind.SUCCESS: 0,
    OutcomeKind.UNIMPLEMENTED: 1,
    OutcomeKind.FAILURE: 2,
    OutcomeKind.TIMEOUT: 3,
}


@dataclass(frozen=True)
class Outcome:
    """Outcome of a run; only failures carry a reason"""
    kind: OutcomeKind
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> 'Outcome':
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def unimplemented(cls) -> 'Outcome':
        return cls(OutcomeKind.UNIMPLEMENTED)

    @classmethod
    def failure(cls, reason: str) -> 'Outcome':
        return cls(OutcomeKind.FAILURE, reason)

    @classmethod
    def timeout(cls) -> 'Outcome':
        return cls(OutcomeKind.TIMEOUT)

    @property
    def severity(self) -> int:
        return SEVERITY[self.kind]

    @property
    def is_defect(self) -> bool:
        """Failures and timeouts are interop defects; unimplemented is a known gap"""
        return self.kind in (OutcomeKind.FAILURE, OutcomeKind.TIMEOUT)

    def __str__(self):
        if self.reason:
            return f"{self.kind.value}: {self.reason}"
        return self.kind.value


def most_severe(outcomes: Iterable[Outcome]) -> Outcome:
    """
    Combine endpoint outcomes: Timeout > Failure > Unimplemented > Success

    Ties keep the first outcome, so pass the client before the server to
    prefer the client's failure reason.
    """
    combined = None
    for outcome in outcomes:
        if combined is None or outcome.severity > combined.severity:
            combined = outcome
    return combined or Outcome.success()


@dataclass(frozen=True)
class RunResult:
    """Result of one (scenario, client, server) run"""
    scenario: str
    client: str
    server: str
    outcome: Outcome
    duration: float = 0.0
    port: Optional[int] = None
    client_log: Optional[str] = None
    server_log: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.scenario, self.client, self.server)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return {
            'scenario': self.scenario,
            'client': self.client,
            'server': self.server,
            'outcome': self.outcome.kind.value,
            'reason': self.outcome.reason,
            'duration': round(self.duration, 3),
            'port': self.port,
            'client_log': self.client_log,
            'server_log': self.server_log,
            'timestamp': self.timestamp.isoformat(),
        }

    def __repr__(self):
        return f"RunResult({self.scenario}, {self.client} -> {self.server}: {self.outcome})"


class ResultMatrix:
    """
    Results of a sweep keyed by (scenario, client, server)

    ``record`` may be called from several worker threads. Rows come back in
    scenario definition order, then client and server registration order.
    """

    def __init__(self, scenarios: List[str], clients: List[str], servers: List[str]):
        self.scenarios = list(scenarios)
        self.clients = list(clients)
        self.servers = list(servers)
        self.timestamp = datetime.now()
        self._results: Dict[Tuple[str, str, str], RunResult] = {}
        self._lock = threading.Lock()

    def expected_keys(self) -> List[Tuple[str, str, str]]:
        return [(scenario, client, server)
                for scenario in self.scenarios
                for client in self.clients
                for server in self.servers]

    def record(self, result: RunResult):
        if result.scenario not in self.scenarios or result.client not in self.clients \
                or result.server not in self.servers:
            raise KeyError(f"{result.key} is not part of this matrix")
        with self._lock:
            if result.key in self._results:
                raise ValueError(f"{result.key} was already recorded")
            self._results[result.key] = result

    def get(self, scenario: str, client: str, server: str) -> Optional[RunResult]:
        with self._lock:
            return self._results.get((scenario, client, server))

    def rows(self) -> List[RunResult]:
        with self._lock:
            return [self._results[key] for key in self.expected_keys() if key in self._results]

    def missing(self) -> List[Tuple[str, str, str]]:
        with self._lock:
            return [key for key in self.expected_keys() if key not in self._results]

    def is_complete(self) -> bool:
        return not self.missing()

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for r in self.rows() if r.outcome.kind == kind)

    def summary(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in OutcomeKind}
        for result in self.rows():
            counts[result.outcome.kind.value] += 1
        counts['total'] = len(self)
        return counts

    @property
    def total_duration(self) -> float:
        return sum(r.duration for r in self.rows())

    def is_success(self) -> bool:
        """No failure and no timeout; unimplemented runs do not count against the sweep"""
        return not any(r.outcome.is_defect for r in self.rows())

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'scenarios': self.scenarios,
            'clients': self.clients,
            'servers': self.servers,
            'summary': self.summary(),
            'total_duration': round(self.total_duration, 3),
            'results': [r.to_dict() for r in self.rows()],
        }

    def __len__(self):
        with self._lock:
            return len(self._results)

    def __repr__(self):
        return f"ResultMatrix({len(self)}/{len(self.expected_keys())} runs recorded)"
