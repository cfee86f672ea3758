import socket
import sys
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
STUBS = Path(__file__).resolve().parent / 'stubs'
CERT_DIR = ROOT / 'certificates'


def endpoint_command(role, transport='tcp', host=None):
    command = [sys.executable, '-m', 'interop_framework.endpoint', role, '--transport', transport]
    if host:
        command += ['--host', host]
    return command


def tcp_implementation():
    return {
        'client': endpoint_command('client', host='127.0.0.1'),
        'server': endpoint_command('server'),
    }


def stub_command(name):
    return [sys.executable, str(STUBS / name)]


def free_port_range(size=10):
    """A block of ports starting at one the kernel just handed out"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        start = sock.getsockname()[1]
    start = min(start, 65535 - size)
    return [start, start + size - 1]


class PeerThread(threading.Thread):
    """Runs ``target()`` in the background and keeps its result or error"""

    def __init__(self, target):
        super().__init__(daemon=True)
        self.target = target
        self.result = None
        self.error = None

    def run(self):
        try:
            self.result = self.target()
        except Exception as e:
            self.error = e
