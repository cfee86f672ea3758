"""
Scenario catalog for the interop matrix

A scenario is an ordered list of steps written from the client's point of
view. The server interprets the same list with the complementary action:
when the client sends its greeting the server receives it, when the client
verifies the bulk stream the server generates it.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .errors import UnsupportedScenario

CLIENT_GREETING = "i am the client. nice to meet you server."
SERVER_GREETING = "i am the server. a pleasure to make your acquaintance."
LARGE_DATA_DOWNLOAD_GB = 256


class Role(Enum):
    """Which side of the connection an executor plays"""
    CLIENT = "client"
    SERVER = "server"


@dataclass(frozen=True)
class Handshake:
    pass


@dataclass(frozen=True)
class SendGreeting:
    """Client writes its greeting; the server reads and checks it"""
    pass


@dataclass(frozen=True)
class RecvGreeting:
    """Server writes its greeting; the client reads and checks it"""
    pass


@dataclass(frozen=True)
class BulkTransfer:
    """Server streams ``size_gb`` tagged gigabytes; the client verifies them"""
    size_gb: int
    key_update_interval_gb: Optional[int] = None

    def __post_init__(self):
        if self.size_gb < 0:
            raise ValueError(f"bulk transfer size must be non-negative, got {self.size_gb}")
        if self.key_update_interval_gb is not None and self.key_update_interval_gb < 1:
            raise ValueError("key update interval must be at least 1 GB")


@dataclass(frozen=True)
class GracefulClose:
    pass


Step = Union[Handshake, SendGreeting, RecvGreeting, BulkTransfer, GracefulClose]


@dataclass(frozen=True)
class Scenario:
    """An immutable, named step sequence"""
    id: str
    steps: Tuple[Step, ...]
    mutual_auth: bool = False
    description: str = field(default="", compare=False)

    def with_bulk_size(self, size_gb: int) -> 'Scenario':
        """Copy of this scenario with every bulk transfer resized"""
        steps = tuple(
            replace(step, size_gb=size_gb) if isinstance(step, BulkTransfer) else step
            for step in self.steps
        )
        return replace(self, steps=steps)

    @property
    def has_bulk_transfer(self) -> bool:
        return any(isinstance(step, BulkTransfer) for step in self.steps)

    def __repr__(self):
        return f"Scenario({self.id}, {len(self.steps)} steps)"


class ScenarioCatalog:
    """Registry of scenarios, kept in definition order"""

    def __init__(self):
        self.scenarios: Dict[str, Scenario] = {}

    def register(self, scenario: Scenario) -> Scenario:
        if scenario.id in self.scenarios:
            raise ValueError(f"Scenario '{scenario.id}' is already registered")
        self.scenarios[scenario.id] = scenario
        return scenario

    def get(self, scenario_id: str) -> Scenario:
        """
        Look up a scenario

        Raises:
            UnsupportedScenario: If the id is not in the catalog
        """
        scenario = self.scenarios.get(scenario_id)
        if scenario is None:
            raise UnsupportedScenario(scenario_id)
        return scenario

    def list_ids(self) -> List[str]:
        return list(self.scenarios)

    def __contains__(self, scenario_id):
        return scenario_id in self.scenarios

    def __iter__(self):
        return iter(self.scenarios.values())

    def __len__(self):
        return len(self.scenarios)

    def __repr__(self):
        return f"ScenarioCatalog({len(self.scenarios)} scenarios registered)"


catalog = ScenarioCatalog()

HANDSHAKE = catalog.register(Scenario(
    id="handshake",
    steps=(Handshake(), GracefulClose()),
    description="Complete a TLS 1.3 handshake and close",
))

GREETING = catalog.register(Scenario(
    id="greeting",
    steps=(Handshake(), SendGreeting(), RecvGreeting(), GracefulClose()),
    description="Exchange fixed greetings after the handshake",
))

MTLS_REQUEST_RESPONSE = catalog.register(Scenario(
    id="mtls_request_response",
    steps=(Handshake(), SendGreeting(), RecvGreeting(), GracefulClose()),
    mutual_auth=True,
    description="Greeting exchange over a mutually authenticated session",
))

LARGE_DATA_DOWNLOAD = catalog.register(Scenario(
    id="large_data_download",
    steps=(Handshake(), SendGreeting(), BulkTransfer(LARGE_DATA_DOWNLOAD_GB), GracefulClose()),
    description="Server streams 256 GB of tagged data to the client",
))

LARGE_DATA_DOWNLOAD_WITH_FREQUENT_KEY_UPDATES = catalog.register(Scenario(
    id="large_data_download_with_frequent_key_updates",
    steps=(Handshake(), SendGreeting(), BulkTransfer(LARGE_DATA_DOWNLOAD_GB, key_update_interval_gb=1),
           GracefulClose()),
    description="256 GB download with a server key update every gigabyte",
))

SCENARIOS = tuple(catalog)
SCENARIO_IDS = catalog.list_ids()


def get_scenario(scenario_id: str) -> Scenario:
    return catalog.get(scenario_id)
