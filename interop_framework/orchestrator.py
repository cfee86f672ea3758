"""
Test matrix orchestrator: runs every (scenario, client, server) combination
"""

import os
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional

from .config import InteropConfig
from .errors import InteropError
from .local_adapter import EXIT_UNIMPLEMENTED, EndpointProcess, PortAllocator, ensure_port_available
from .results import Outcome, OutcomeKind, ResultMatrix, RunResult, most_severe


@dataclass(frozen=True)
class MatrixEntry:
    """One planned run"""
    scenario: str
    client: str
    server: str

    def __str__(self):
        return f"{self.scenario} [{self.client} -> {self.server}]"


class InteropMatrixRunner:
    """Execute the interop matrix with per-run isolation and timeouts"""

    def __init__(self, config: InteropConfig, verbose: bool = False,
                 on_result: Optional[Callable[[RunResult], None]] = None):
        """
        Initialize the runner

        Args:
            config: InteropConfig instance
            verbose: Print lifecycle details of every run
            on_result: Called with each RunResult as soon as it is recorded
        """
        self.config = config
        self.verbose = verbose
        self.on_result = on_result
        self.settings = config.get_test_execution_settings()
        self.host = self.settings['host']
        start, end = config.get_port_range()
        self.ports = PortAllocator(start, end)
        self.log_dir = config.get_log_dir()

    def _log(self, message: str):
        if self.verbose:
            print(f"[Orchestrator] {message}")

    def plan(self, scenarios: Optional[List[str]] = None, clients: Optional[List[str]] = None,
             servers: Optional[List[str]] = None) -> List[MatrixEntry]:
        """
        Enumerate runs in scenario, client, server order

        Each argument narrows the configured set; ``None`` keeps all of it.
        """
        scenarios = self._select(self.config.get_enabled_scenarios(), scenarios, 'scenario')
        clients = self._select(self.config.list_clients(), clients, 'client')
        servers = self._select(self.config.list_servers(), servers, 'server')
        return [MatrixEntry(s, c, v) for s in scenarios for c in clients for v in servers]

    @staticmethod
    def _select(available: List[str], wanted: Optional[List[str]], kind: str) -> List[str]:
        if not wanted:
            return list(available)
        unknown = [w for w in wanted if w not in available]
        if unknown:
            raise ValueError(f"Unknown or disabled {kind}(s): {', '.join(unknown)}")
        return [a for a in available if a in wanted]

    def run_all(self, scenarios: Optional[List[str]] = None, clients: Optional[List[str]] = None,
                servers: Optional[List[str]] = None, parallelism: Optional[int] = None) -> ResultMatrix:
        """
        Run the whole matrix

        Runs are independent and execute concurrently up to ``parallelism``;
        no run is retried.

        Returns:
            ResultMatrix with one entry per planned run
        """
        entries = self.plan(scenarios, clients, servers)
        matrix = ResultMatrix(
            scenarios=_unique(e.scenario for e in entries),
            clients=_unique(e.client for e in entries),
            servers=_unique(e.server for e in entries),
        )
        workers = max(1, min(parallelism or self.config.get_parallelism(), self.ports.size))

        print(f"\nRunning {len(entries)} interop runs with concurrency {workers}")
        print("=" * 70)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='interop-run') as pool:
            futures = {pool.submit(self.run_one, entry): entry for entry in entries}
            for future in as_completed(futures):
                result = future.result()
                matrix.record(result)
                print(f"[Orchestrator] {futures[future]} finished with {result.outcome} "
                      f"in {result.duration:.1f}s")
                if self.on_result:
                    self.on_result(result)

        return matrix

    def run_one(self, entry: MatrixEntry) -> RunResult:
        """
        Execute one run; never raises

        The port and both processes are reclaimed whatever the outcome.
        """
        start_time = time.monotonic()
        port = None
        server = client = None

        try:
            port = self.ports.acquire(timeout=self.config.get_timeout(entry.scenario))
            server = self._endpoint(entry, 'server', entry.server, port)
            client = self._endpoint(entry, 'client', entry.client, port)
            outcome = self._execute(entry, server, client)

        except InteropError as e:
            outcome = Outcome.failure(e.reason)
        except Exception as e:
            print(f"[Orchestrator] Internal error in {entry}: {e}\n{traceback.format_exc()}")
            outcome = Outcome.failure(f"harness error: {e}")

        finally:
            for endpoint in (client, server):
                if endpoint:
                    endpoint.stop()
            if port is not None:
                # A killed server may leave the listener open for a moment
                ensure_port_available(port, timeout=float(self.settings['readiness_timeout']))
                self.ports.release(port)

        return RunResult(
            scenario=entry.scenario,
            client=entry.client,
            server=entry.server,
            outcome=outcome,
            duration=time.monotonic() - start_time,
            port=port,
            client_log=str(client.log_path) if client else None,
            server_log=str(server.log_path) if server else None,
        )

    def _endpoint(self, entry: MatrixEntry, role: str, implementation: str, port: int) -> EndpointProcess:
        log_path = self.log_dir / f"{entry.scenario}_{entry.server}_{entry.client}_{role}.log"
        return EndpointProcess(
            implementation=implementation,
            role=role,
            command=self.config.get_command(implementation, role),
            scenario_id=entry.scenario,
            port=port,
            log_path=log_path,
            cwd=self.config.get_working_dir(implementation),
            env=os.environ.copy(),
            verbose=self.verbose,
        )

    def _execute(self, entry: MatrixEntry, server: EndpointProcess, client: EndpointProcess) -> Outcome:
        timeout = self.config.get_timeout(entry.scenario)
        deadline = time.monotonic() + timeout

        server.start()
        if not self._wait_until_ready(entry, server):
            if server.poll() is not None:
                outcome = server.result().to_outcome()
                if outcome.kind != OutcomeKind.SUCCESS:
                    return outcome
                return Outcome.failure("server exited before accepting a connection")
            return Outcome.failure(
                f"server did not become ready on port {server.port} "
                f"within {self.settings['readiness_timeout']}s")

        client.start()
        return self._supervise(entry, server, client, deadline)

    def _wait_until_ready(self, entry: MatrixEntry, server: EndpointProcess) -> bool:
        impl = self.config.get_implementation(entry.server)
        if impl['readiness'] == 'delay':
            return server.wait_startup_delay(float(impl['startup_delay']))
        return server.is_ready(self.host, timeout=float(self.settings['readiness_timeout']),
                               retry_interval=float(self.settings['poll_interval']))

    def _supervise(self, entry: MatrixEntry, server: EndpointProcess, client: EndpointProcess,
                   deadline: float) -> Outcome:
        """
        Poll both endpoints until they exit or the deadline passes

        - either side unimplemented: the peer is stopped, the run is Unimplemented
        - one side failed: the peer gets a grace period, then the first failure wins
        - deadline reached: both are stopped, the run is a Timeout
        """
        poll_interval = float(self.settings['poll_interval'])
        grace = float(self.settings['peer_grace_period'])
        first_failure = None
        grace_deadline = None

        while True:
            endpoints = (client, server)
            codes = [endpoint.poll() for endpoint in endpoints]

            for endpoint, code in zip(endpoints, codes):
                if code == EXIT_UNIMPLEMENTED:
                    self._log(f"{entry}: {endpoint.role} does not implement the scenario")
                    return Outcome.unimplemented()

            if all(code is not None for code in codes):
                return most_severe(e.result().to_outcome() for e in endpoints)

            if first_failure is None:
                for endpoint, code in zip(endpoints, codes):
                    if code is not None and code != 0:
                        first_failure = endpoint.result().to_outcome()
                        grace_deadline = time.monotonic() + grace
                        self._log(f"{entry}: {endpoint.role} failed ({first_failure}), "
                                  f"waiting {grace}s for its peer")
                        break

            now = time.monotonic()
            if now >= deadline:
                for endpoint in endpoints:
                    if endpoint.running:
                        endpoint.timed_out = True
                self._log(f"{entry}: timed out")
                return Outcome.timeout()

            if grace_deadline is not None and now >= grace_deadline:
                self._log(f"{entry}: stopping the peer after the grace period")
                return first_failure

            time.sleep(poll_interval)


def _unique(values) -> List[str]:
    return list(dict.fromkeys(values))
