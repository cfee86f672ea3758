#!/usr/bin/env python3
"""Client that sends the cleartext preamble and then never does anything else"""
import sys
import time

from interop_framework.connection import CLEARTEXT_PREAMBLE, open_client_socket


def main():
    port = int(sys.argv[2])
    sock = open_client_socket('127.0.0.1', port, timeout=10)
    sock.sendall(CLEARTEXT_PREAMBLE)
    print("[StallClient] Preamble sent, stalling", flush=True)
    while True:
        time.sleep(1)


if __name__ == '__main__':
    sys.exit(main())
