import os
import socket

import pytest

from helpers import CERT_DIR, ROOT, free_port_range, tcp_implementation
from interop_framework.config import InteropConfig
from interop_framework.connection import PlainConnection
from interop_framework.scenarios import Role


@pytest.fixture
def subprocess_env(monkeypatch):
    """Endpoints and stubs run from the certificate directory and import the package from the repo"""
    pythonpath = os.environ.get('PYTHONPATH')
    monkeypatch.setenv('PYTHONPATH', str(ROOT) + (os.pathsep + pythonpath if pythonpath else ''))


@pytest.fixture
def config_factory(tmp_path, subprocess_env):
    def make(implementations=None, scenarios=None, port_range=None, **execution):
        settings = {
            'host': '127.0.0.1',
            'default_timeout': 20,
            'scenario_timeouts': {},
            'port_range': port_range or free_port_range(),
            'readiness_timeout': 10,
            'peer_grace_period': 2,
            'poll_interval': 0.02,
            'log_dir': str(tmp_path / 'logs'),
        }
        settings.update(execution)
        data = {
            'certificates': {'dir': str(CERT_DIR)},
            'implementations': implementations or {'python-tcp': tcp_implementation()},
            'test_execution': settings,
        }
        if scenarios:
            data['scenarios'] = scenarios
        return InteropConfig.from_dict(data, base_dir=str(ROOT))

    return make


@pytest.fixture
def plain_pair():
    """Client and server PlainConnections over a connected socketpair"""
    client_sock, server_sock = socket.socketpair()
    client = PlainConnection(client_sock, Role.CLIENT)
    server = PlainConnection(server_sock, Role.SERVER)
    yield client, server
    client.close()
    server.close()
