"""
Process Endpoint Adapter

Launches one client or server implementation as an isolated process group,
captures its output into a per-run log file and observes its termination.
Also owns the port allocator shared by concurrent runs.
"""

import os
import signal
import socket
import subprocess
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .errors import EndpointTimeout, FAILURE_MARKER, ProcessCrash
from .results import Outcome

EXIT_UNIMPLEMENTED = 127
OUTPUT_TAIL_BYTES = 64 * 1024


@dataclass
class EndpointResult:
    """How one endpoint process terminated"""
    implementation: str
    role: str
    exit_code: Optional[int]
    duration: float
    output_tail: str = ""
    failure_reason: Optional[str] = None
    timed_out: bool = False

    def to_outcome(self) -> Outcome:
        """
        Map the process outcome onto the run taxonomy

        0 is success, 127 unimplemented, a signal is a crash and anything
        else a failure.
        """
        if self.timed_out:
            return Outcome.timeout()
        if self.exit_code == 0:
            return Outcome.success()
        if self.exit_code == EXIT_UNIMPLEMENTED:
            return Outcome.unimplemented()
        if self.exit_code is not None and self.exit_code < 0:
            return Outcome.failure(ProcessCrash(f"{self.role} crashed with signal {-self.exit_code}").reason)
        if self.failure_reason:
            return Outcome.failure(self.failure_reason)
        return Outcome.failure(f"{self.role} exited with status {self.exit_code}")


class EndpointProcess:
    """
    One implementation process playing one role in one run

    Provides:
    - start in a new process group (``<command...> <scenario_id> <port>``)
    - readiness detection by connect-retry probe or fixed startup delay
    - graceful termination with forced cleanup of the whole group
    """

    def __init__(self, implementation: str, role: str, command: List[str], scenario_id: str,
                 port: int, log_path: Path, cwd: Optional[Path] = None,
                 env: Optional[Dict[str, str]] = None, verbose: bool = False):
        """
        Args:
            implementation: Implementation name (for logs and results)
            role: 'client' or 'server'
            command: Executable and leading arguments
            scenario_id: Scenario passed as the first contract argument
            port: Port passed as the second contract argument
            log_path: File receiving the process's stdout and stderr
            cwd: Working directory (trust material is resolved against it)
            env: Environment for the process (default: inherited)
            verbose: Print lifecycle messages
        """
        self.implementation = implementation
        self.role = role
        self.command = list(command) + [scenario_id, str(port)]
        self.scenario_id = scenario_id
        self.port = port
        self.log_path = Path(log_path)
        self.cwd = Path(cwd) if cwd else None
        self.env = env
        self.verbose = verbose

        self.process: Optional[subprocess.Popen] = None
        self._pgid: Optional[int] = None
        self._log_file = None
        self._start_time: Optional[float] = None
        self._end_time: Optional[float] = None
        self.timed_out = False

    def _log(self, message: str):
        if self.verbose:
            print(f"[LocalAdapter] {self.implementation} {self.role}: {message}")

    def start(self):
        """
        Launch the process

        Raises:
            ProcessCrash: The executable could not be started
        """
        self._log(f"Command: {' '.join(self.command)}")
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_file = open(self.log_path, 'wb')

        try:
            # A new session makes the process a group leader so the whole tree can be signalled
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=self._log_file,
                stderr=subprocess.STDOUT,
                cwd=self.cwd,
                env=self.env,
                start_new_session=True,
            )
        except OSError as e:
            self._close_log()
            raise ProcessCrash(f"{self.role} could not be started", detail=str(e)) from e

        self._start_time = time.monotonic()
        self._pgid = os.getpgid(self.process.pid)
        self._log(f"Started (PID: {self.process.pid}) on port {self.port}")

    def poll(self) -> Optional[int]:
        if not self.process:
            return None
        code = self.process.poll()
        if code is not None and self._end_time is None:
            self._end_time = time.monotonic()
        return code

    @property
    def running(self) -> bool:
        return self.process is not None and self.poll() is None

    def is_ready(self, host: str, timeout: float = 10, retry_interval: float = 0.05) -> bool:
        """
        Check whether the server accepts connections

        Args:
            host: Address the server is reached at
            timeout: Seconds to keep probing
            retry_interval: Seconds between probes

        Returns:
            bool: True once a connect succeeds, False on timeout or if the process exited
        """
        deadline = time.monotonic() + timeout

        while time.monotonic() < deadline:
            if not self.running:
                self._log("Process exited before becoming ready")
                return False
            try:
                with socket.create_connection((host, self.port), timeout=1.0):
                    pass
                self._log(f"Ready on {host}:{self.port}")
                return True
            except OSError:
                time.sleep(retry_interval)

        self._log(f"Timeout waiting for port {self.port}")
        return False

    def wait_startup_delay(self, seconds: float) -> bool:
        """Sleep for implementations that cannot be probed; False if the process exited meanwhile"""
        deadline = time.monotonic() + seconds
        while time.monotonic() < deadline:
            if not self.running:
                return False
            time.sleep(min(0.05, max(0.0, deadline - time.monotonic())))
        return self.running

    def wait(self, timeout: float) -> int:
        """
        Wait for the process to exit

        Raises:
            EndpointTimeout: If it is still running after ``timeout`` seconds
        """
        try:
            code = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise EndpointTimeout(detail=f"{self.role} still running after {timeout}s") from e
        self.poll()
        return code

    def stop(self, timeout: float = 5):
        """
        Stop the process group

        SIGTERM first, SIGKILL if the group does not exit within ``timeout``.
        """
        if not self.process:
            self._close_log()
            return

        try:
            if self.process.poll() is not None:
                return

            self._log(f"Stopping process (PID: {self.process.pid})...")
            self._signal_group(signal.SIGTERM)

            try:
                self.wait(timeout)
                self._log("Process terminated gracefully")
                return
            except EndpointTimeout:
                self._log("Process did not terminate, forcing kill...")

            self._signal_group(signal.SIGKILL)
            self.wait(2)
            self._log("Process killed")

        finally:
            # Children that outlived the group leader still hold the port
            self._signal_group(signal.SIGKILL)
            self.poll()
            self._close_log()

    def _signal_group(self, sig):
        try:
            if self._pgid:
                os.killpg(self._pgid, sig)
            else:
                self.process.send_signal(sig)
        except (ProcessLookupError, PermissionError):
            pass

    def _close_log(self):
        if self._log_file and not self._log_file.closed:
            self._log_file.close()

    @property
    def duration(self) -> float:
        if self._start_time is None:
            return 0.0
        end = self._end_time if self._end_time is not None else time.monotonic()
        return end - self._start_time

    def read_output_tail(self) -> str:
        if not self.log_path.exists():
            return ""
        with open(self.log_path, 'rb') as f:
            f.seek(0, os.SEEK_END)
            size = f.tell()
            f.seek(max(0, size - OUTPUT_TAIL_BYTES))
            return f.read().decode('utf-8', errors='replace')

    def result(self) -> EndpointResult:
        output = self.read_output_tail()
        return EndpointResult(
            implementation=self.implementation,
            role=self.role,
            exit_code=self.poll(),
            duration=self.duration,
            output_tail=output,
            failure_reason=extract_failure_reason(output),
            timed_out=self.timed_out,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    def __repr__(self):
        status = "running" if self.running else "stopped"
        return f"<EndpointProcess {self.implementation} {self.role} port={self.port} [{status}]>"


def extract_failure_reason(output: str) -> Optional[str]:
    """Reason from the last ``interop-failure:`` line of an endpoint's output"""
    for line in reversed(output.splitlines()):
        line = line.strip()
        if line.startswith(FAILURE_MARKER):
            return line[len(FAILURE_MARKER):].strip() or None
    return None


def port_is_free(port: int, host: str = '127.0.0.1') -> bool:
    """True if nothing is bound to ``port``"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


def ensure_port_available(port: int, host: str = '127.0.0.1', timeout: float = 5,
                          retry_interval: float = 0.1) -> bool:
    """
    Wait until nothing is bound to ``port`` any more

    Returns:
        bool: True once the port can be bound, False on timeout
    """
    deadline = time.monotonic() + timeout

    while time.monotonic() < deadline:
        if port_is_free(port, host):
            return True
        time.sleep(retry_interval)

    print(f"[LocalAdapter] Port {port} still in use after {timeout}s")
    return False


class PortAllocator:
    """
    Leases TCP ports from a fixed range to concurrent runs

    A port is handed out only if no other run holds it and nothing is bound
    to it. Leases are returned with ``release``.
    """

    def __init__(self, start: int, end: int, host: str = '127.0.0.1'):
        if start > end:
            raise ValueError(f"Empty port range {start}-{end}")
        self.start = start
        self.end = end
        self.host = host
        self._leased = set()
        self._next = start
        self._cond = threading.Condition()

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def acquire(self, timeout: float = 30, retry_interval: float = 0.1) -> int:
        """
        Lease a free port

        Raises:
            RuntimeError: If no port becomes free within ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                port = self._scan()
                if port is not None:
                    self._leased.add(port)
                    return port
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise RuntimeError(f"No free port in {self.start}-{self.end} after {timeout}s")
                self._cond.wait(min(retry_interval, remaining))

    def _scan(self) -> Optional[int]:
        for i in range(self.size):
            port = self.start + (self._next - self.start + i) % self.size
            if port in self._leased or not port_is_free(port, self.host):
                continue
            self._next = self.start + (port - self.start + 1) % self.size
            return port
        return None

    def release(self, port: int):
        with self._cond:
            self._leased.discard(port)
            self._cond.notify_all()

    @contextmanager
    def lease(self, timeout: float = 30):
        port = self.acquire(timeout=timeout)
        try:
            yield port
        finally:
            self.release(port)

    def leased(self) -> List[int]:
        with self._cond:
            return sorted(self._leased)

    def __repr__(self):
        return f"PortAllocator({self.start}-{self.end}, {len(self._leased)} leased)"
