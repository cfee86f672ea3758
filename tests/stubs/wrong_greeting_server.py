#!/usr/bin/env python3
"""Cleartext server that answers the client greeting with the wrong message"""
import sys

from interop_framework.connection import PlainConnection, accept_connection, open_listener
from interop_framework.errors import TransportError
from interop_framework.scenarios import CLIENT_GREETING, Role


def main():
    scenario, port = sys.argv[1], int(sys.argv[2])
    listener = open_listener('0.0.0.0', port)
    sock, _ = accept_connection(listener)
    listener.close()

    connection = PlainConnection(sock, Role.SERVER)
    connection.handshake()
    connection.read_exact(len(CLIENT_GREETING))
    connection.write(b"wrong message")
    connection.shutdown_write()
    # Drain until the client gives up
    try:
        while connection.read(4096):
            pass
    except TransportError:
        pass
    connection.close()
    print(f"[WrongGreetingServer] {scenario} done")
    return 0


if __name__ == '__main__':
    sys.exit(main())
