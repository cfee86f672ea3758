#!/usr/bin/env python3
"""
Bundled Python implementation of the interop client and server

Invocation follows the contract every implementation in the matrix obeys:

    interop-client [options] <scenario_id> <port>
    interop-server [options] <scenario_id> <port>
    python3 -m interop_framework.endpoint <client|server> [options] <scenario_id> <port>

Exit codes: 0 on success, 127 when the scenario is not supported, 1 on any
failure. On failure the last line written to stderr is
``interop-failure: <reason>`` so the orchestrator can report why.
"""

import argparse
import sys
from pathlib import Path

from .connection import (
    PlainConnection, TlsliteConnection, accept_connection, credentials_for,
    open_client_socket, open_listener,
)
from .errors import FAILURE_MARKER, InteropError, UnsupportedScenario
from .executor import ProtocolExecutor
from .scenarios import Role, get_scenario

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_UNIMPLEMENTED = 127


def log(message: str):
    print(message, flush=True)


def report_failure(reason: str):
    print(f"{FAILURE_MARKER}{reason}", file=sys.stderr, flush=True)


def parse_arguments(argv=None, role=None):
    """Parse endpoint arguments; ``role`` is fixed by the role-specific entry points"""
    parser = argparse.ArgumentParser(description='TLS 1.3 interop endpoint (tlslite-ng)')
    if role is None:
        parser.add_argument('role', choices=[r.value for r in Role],
                            help='Act as the client or the server')
    parser.add_argument('--transport', choices=['tls', 'tcp'], default='tls',
                        help='tls: TLS 1.3 via tlslite-ng, tcp: cleartext harness self-test')
    parser.add_argument('--cert-dir', type=str, default='.',
                        help='Directory holding the PEM trust material (default: cwd)')
    parser.add_argument('--host', type=str, default=None,
                        help='Address to connect to or bind (default: localhost / 0.0.0.0)')
    parser.add_argument('--large-data-gb', type=int, default=None,
                        help='Override the bulk transfer size in gigabytes')
    parser.add_argument('scenario', help='Scenario identifier')
    parser.add_argument('port', type=int, help='TCP port')

    args = parser.parse_args(argv)
    if role is not None:
        args.role = role.value
    return args


def build_connection(args, role: Role, sock, scenario):
    if args.transport == 'tcp':
        return PlainConnection(sock, role)
    credentials = credentials_for(role, Path(args.cert_dir), scenario.mutual_auth)
    return TlsliteConnection(sock, role, credentials=credentials,
                             mutual_auth=scenario.mutual_auth,
                             server_name=args.host or 'localhost')


def run_client(args, scenario) -> int:
    host = args.host or 'localhost'
    log(f"[Endpoint] Connecting to {host}:{args.port}")
    sock = open_client_socket(host, args.port, timeout=10)
    connection = build_connection(args, Role.CLIENT, sock, scenario)
    return finish(ProtocolExecutor(scenario, Role.CLIENT, connection, log=log).run())


def run_server(args, scenario) -> int:
    host = args.host or '0.0.0.0'
    listener = open_listener(host, args.port)
    log(f"[Endpoint] Listening on {host}:{args.port}")
    try:
        sock, peer_addr = accept_connection(listener)
    finally:
        listener.close()
    log(f"[Endpoint] Connection from {peer_addr}")
    connection = build_connection(args, Role.SERVER, sock, scenario)
    return finish(ProtocolExecutor(scenario, Role.SERVER, connection, log=log).run())


def finish(verdict) -> int:
    if verdict.passed:
        log(f"[Endpoint] Scenario {verdict.scenario} completed in {verdict.duration:.2f}s "
            f"({verdict.key_updates} key updates)")
        return EXIT_SUCCESS
    report_failure(verdict.reason)
    return EXIT_FAILURE


def main(argv=None, role=None) -> int:
    args = parse_arguments(argv, role)
    role = Role(args.role)

    try:
        scenario = get_scenario(args.scenario)
    except UnsupportedScenario:
        log(f"[Endpoint] Unsupported scenario: {args.scenario}")
        return EXIT_UNIMPLEMENTED

    if args.large_data_gb is not None:
        scenario = scenario.with_bulk_size(args.large_data_gb)

    try:
        if role == Role.CLIENT:
            return run_client(args, scenario)
        return run_server(args, scenario)
    except InteropError as e:
        report_failure(e.reason)
        return EXIT_FAILURE
    except OSError as e:
        print(f"[Endpoint] {type(e).__name__}: {e}", file=sys.stderr)
        report_failure(f"{role.value} I/O error: {e.strerror or e}")
        return EXIT_FAILURE


def client_main() -> int:
    return main(role=Role.CLIENT)


def server_main() -> int:
    return main(role=Role.SERVER)


if __name__ == '__main__':
    sys.exit(main())
