"""
Protocol executor: runs one scenario over one connection for one role
"""

import time
import traceback
from dataclasses import dataclass
from typing import Callable, Optional

from .connection import Connection
from .errors import GreetingMismatch, InteropError, TransportError, UncleanClose
from .scenarios import (
    CLIENT_GREETING, SERVER_GREETING, BulkTransfer, GracefulClose, Handshake,
    RecvGreeting, Role, Scenario, SendGreeting,
)
from .tagged_stream import TaggedStreamCodec

CLIENT_GREETING_BYTES = CLIENT_GREETING.encode('utf-8')
SERVER_GREETING_BYTES = SERVER_GREETING.encode('utf-8')

PROGRESS_INTERVAL_GB = 10


@dataclass
class Verdict:
    """Outcome of one executor run"""
    scenario: str
    role: Role
    passed: bool
    steps_completed: int
    duration: float = 0.0
    key_updates: int = 0
    failure: Optional[InteropError] = None

    @property
    def reason(self) -> Optional[str]:
        return self.failure.reason if self.failure else None

    def __repr__(self):
        status = "passed" if self.passed else f"failed: {self.failure}"
        return f"Verdict({self.scenario}/{self.role.value}: {status})"


class ProtocolExecutor:
    """
    Interpret a scenario's steps over a connection

    Steps run strictly in order. The first failing step stops the script and
    the connection is closed whatever the result.
    """

    def __init__(self, scenario: Scenario, role: Role, connection: Connection,
                 codec: Optional[TaggedStreamCodec] = None, log: Callable[[str], None] = print):
        self.scenario = scenario
        self.role = role
        self.connection = connection
        self.codec = codec or TaggedStreamCodec()
        self.log = log
        self._handlers = {
            Handshake: self._handshake,
            SendGreeting: self._client_greeting,
            RecvGreeting: self._server_greeting,
            BulkTransfer: self._bulk_transfer,
            GracefulClose: self._graceful_close,
        }
        # Reason reported for bytes that follow the last greeting received
        self._greeting_reason: Optional[str] = None

    def run(self) -> Verdict:
        verdict = Verdict(scenario=self.scenario.id, role=self.role, passed=False, steps_completed=0)
        start_time = time.time()
        self.log(f"[Executor] Executing the {self.scenario.id} scenario as {self.role.value}")

        try:
            for step in self.scenario.steps:
                self._handlers[type(step)](step)
                verdict.steps_completed += 1
            verdict.passed = True
        except InteropError as e:
            verdict.failure = e
            self.log(f"[Executor] Step {verdict.steps_completed + 1} failed: {e}")
        except Exception as e:
            verdict.failure = TransportError(detail=f"{type(e).__name__}: {e}")
            self.log(f"[Executor] Unexpected error: {e}\n{traceback.format_exc()}")
        finally:
            self.connection.close()
            verdict.duration = time.time() - start_time
            verdict.key_updates = self.connection.key_updates

        return verdict

    # -- steps -------------------------------------------------------------

    def _handshake(self, step: Handshake):
        self.connection.handshake()
        self.log("[Executor] Handshake completed")

    def _client_greeting(self, step: SendGreeting):
        if self.role == Role.CLIENT:
            self.log("[Executor] Sending the client greeting")
            self.connection.write(CLIENT_GREETING_BYTES)
        else:
            self._expect(CLIENT_GREETING_BYTES, "unexpected client greeting")

    def _server_greeting(self, step: RecvGreeting):
        if self.role == Role.SERVER:
            self.log("[Executor] Sending the server greeting")
            self.connection.write(SERVER_GREETING_BYTES)
        else:
            self._expect(SERVER_GREETING_BYTES, "unexpected server greeting")

    def _bulk_transfer(self, step: BulkTransfer):
        self._greeting_reason = None
        if self.role == Role.SERVER:
            self.codec.generate(step.size_gb, self.connection.write,
                                on_group=lambda group: self._before_send_group(step, group))
            self.log(f"[Executor] Sent {step.size_gb} GB")
        else:
            self.codec.verify(step.size_gb, self.connection.read_exact,
                              on_group=self._before_recv_group)
            self.log(f"[Executor] Received and verified {step.size_gb} GB")

    def _graceful_close(self, step: GracefulClose):
        if self.role == Role.CLIENT:
            self.log("[Executor] Shutting down the client side of the connection")
            self.connection.shutdown_write()
            self.log("[Executor] Waiting for the server to shut down")
        else:
            self.log("[Executor] Waiting for the client to close")

        try:
            trailing = self.connection.read(1)
        except TransportError as e:
            raise UncleanClose(detail=e.detail) from e
        if trailing and self._greeting_reason:
            raise GreetingMismatch(self._greeting_reason, detail=f"read {trailing!r} past the end of the greeting")
        if trailing:
            raise UncleanClose(detail=f"read {trailing!r} after the half-close")

        if self.role == Role.SERVER:
            self.log("[Executor] Closing the server side of the connection")
            self.connection.close()

    # -- helpers -----------------------------------------------------------

    def _expect(self, expected: bytes, reason: str):
        received = self.connection.read_exact(len(expected))
        if received != expected:
            raise GreetingMismatch(reason, detail=f"received {bytes(received)!r}")
        extra = self.connection.pending()
        if extra:
            raise GreetingMismatch(reason, detail=f"{extra} bytes past the end of the greeting")
        self._greeting_reason = reason
        self.log(f"[Executor] Received the expected {len(expected)}-byte greeting")

    def _before_send_group(self, step: BulkTransfer, group_index: int):
        interval = step.key_update_interval_gb
        if interval and group_index % interval == 0:
            self.connection.key_update()
        if group_index % PROGRESS_INTERVAL_GB == 0:
            self.log(f"[Executor] GB sent: {group_index}")

    def _before_recv_group(self, group_index: int):
        if group_index % PROGRESS_INTERVAL_GB == 0:
            self.log(f"[Executor] GB received: {group_index}")
