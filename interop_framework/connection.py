"""
Transport connections driven by the protocol executor

Two transports are provided:

- ``TlsliteConnection``: TLS 1.3 through tlslite-ng, the transport of the
  bundled Python implementation.
- ``PlainConnection``: cleartext TCP with a fixed preamble in place of the
  handshake. It exercises the executor, the endpoint and the orchestrator
  without certificates.
"""

import socket
from pathlib import Path
from typing import Optional, Tuple

from tlslite.api import TLSConnection, HandshakeSettings, X509CertChain, parsePEMKey
from tlslite.constants import AlertDescription, AlertLevel, KeyUpdateMessageType
from tlslite.errors import TLSError
from tlslite.messages import Alert

from .errors import HandshakeError, TransportError
from .scenarios import Role

CLEARTEXT_PREAMBLE = b"interop-tcp/1\n"

CA_CERT_FILE = 'ca-cert.pem'
SERVER_CHAIN_FILE = 'server-chain.pem'
SERVER_KEY_FILE = 'server-key.pem'
CLIENT_CERT_FILE = 'client-cert.pem'
CLIENT_KEY_FILE = 'client-key.pem'


class Connection:
    """
    Byte-stream connection owned by a single executor

    Subclasses implement the primitive operations; ``read_exact`` is shared.
    """

    def __init__(self, role: Role):
        self.role = role
        self.key_updates = 0
        self.closed = False

    def handshake(self):
        raise NotImplementedError

    def write(self, data: bytes):
        raise NotImplementedError

    def read(self, max_bytes: int) -> bytes:
        """Read up to ``max_bytes``; an empty result means end of stream"""
        raise NotImplementedError

    def pending(self) -> int:
        """Bytes already received but not yet read, without blocking"""
        raise NotImplementedError

    def key_update(self):
        raise NotImplementedError

    def shutdown_write(self):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def read_exact(self, size: int) -> bytes:
        """
        Read exactly ``size`` bytes

        Returns fewer bytes only if the stream ended first.
        """
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        if len(chunks) == 1:
            return chunks[0]
        return b"".join(chunks)


class PlainConnection(Connection):
    """Cleartext TCP connection"""

    def __init__(self, sock: socket.socket, role: Role):
        super().__init__(role)
        self.sock = sock

    def handshake(self):
        try:
            if self.role == Role.CLIENT:
                self.sock.sendall(CLEARTEXT_PREAMBLE)
                return
            preamble = self.read_exact(len(CLEARTEXT_PREAMBLE))
        except OSError as e:
            raise HandshakeError(detail=str(e)) from e
        if preamble != CLEARTEXT_PREAMBLE:
            raise HandshakeError(detail=f"unexpected preamble {preamble!r}")

    def write(self, data: bytes):
        try:
            self.sock.sendall(data)
        except OSError as e:
            raise TransportError(detail=str(e)) from e

    def read(self, max_bytes: int) -> bytes:
        try:
            return self.sock.recv(max_bytes)
        except OSError as e:
            raise TransportError(detail=str(e)) from e

    def pending(self) -> int:
        try:
            return len(self.sock.recv(65536, socket.MSG_PEEK | socket.MSG_DONTWAIT))
        except (BlockingIOError, InterruptedError):
            return 0
        except OSError as e:
            raise TransportError(detail=str(e)) from e

    def key_update(self):
        # No keys on the cleartext transport; only the cadence is recorded
        self.key_updates += 1

    def shutdown_write(self):
        try:
            self.sock.shutdown(socket.SHUT_WR)
        except OSError as e:
            raise TransportError(detail=str(e)) from e

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.sock.close()


class TlsCredentials:
    """Certificate chain and private key loaded from PEM files"""

    def __init__(self, cert_chain: X509CertChain, private_key):
        self.cert_chain = cert_chain
        self.private_key = private_key

    @classmethod
    def load(cls, cert_file: Path, key_file: Path) -> 'TlsCredentials':
        with open(cert_file) as f:
            cert_chain = X509CertChain()
            cert_chain.parsePemList(f.read())
        with open(key_file) as f:
            private_key = parsePEMKey(f.read(), private=True, implementations=["python"])
        return cls(cert_chain, private_key)


def credentials_for(role: Role, cert_dir: Path, mutual_auth: bool) -> Optional[TlsCredentials]:
    """
    Credentials an endpoint presents during the handshake

    Servers always present ``server-chain.pem``; clients present
    ``client-cert.pem`` only for mutually authenticated scenarios.
    """
    cert_dir = Path(cert_dir)
    if role == Role.SERVER:
        return TlsCredentials.load(cert_dir / SERVER_CHAIN_FILE, cert_dir / SERVER_KEY_FILE)
    if mutual_auth:
        return TlsCredentials.load(cert_dir / CLIENT_CERT_FILE, cert_dir / CLIENT_KEY_FILE)
    return None


def tls13_settings() -> HandshakeSettings:
    settings = HandshakeSettings()
    settings.minVersion = (3, 4)
    settings.maxVersion = (3, 4)
    return settings


class TlsliteConnection(Connection):
    """TLS 1.3 connection backed by tlslite-ng"""

    def __init__(self, sock: socket.socket, role: Role, credentials: Optional[TlsCredentials] = None,
                 mutual_auth: bool = False, server_name: str = 'localhost'):
        super().__init__(role)
        self.sock = sock
        self.tls = TLSConnection(sock)
        self.credentials = credentials
        self.mutual_auth = mutual_auth
        self.server_name = server_name

    def handshake(self):
        settings = tls13_settings()
        chain = self.credentials.cert_chain if self.credentials else None
        key = self.credentials.private_key if self.credentials else None
        try:
            if self.role == Role.CLIENT:
                self.tls.handshakeClientCert(certChain=chain, privateKey=key,
                                             settings=settings, serverName=self.server_name)
            else:
                self.tls.handshakeServer(certChain=chain, privateKey=key,
                                         reqCert=self.mutual_auth, settings=settings)
        except (TLSError, OSError) as e:
            raise HandshakeError(detail=f"{type(e).__name__}: {e}") from e

    def write(self, data: bytes):
        try:
            self.tls.write(data)
        except (TLSError, OSError) as e:
            raise TransportError(detail=f"{type(e).__name__}: {e}") from e

    def read(self, max_bytes: int) -> bytes:
        try:
            return bytes(self.tls.read(max=max_bytes, min=1))
        except (TLSError, OSError) as e:
            raise TransportError(detail=f"{type(e).__name__}: {e}") from e

    def pending(self) -> int:
        # Only decrypted application data counts; undecrypted records stay in the socket
        return len(getattr(self.tls, '_readBuffer', b''))

    def key_update(self):
        """Update our sending keys without asking the peer to update its own"""
        try:
            for _ in self.tls.send_keyupdate_request(KeyUpdateMessageType.update_not_requested):
                pass
        except (TLSError, OSError) as e:
            raise TransportError(detail=f"key update failed: {e}") from e
        self.key_updates += 1

    def shutdown_write(self):
        """
        Send close_notify and keep the read side open

        tlslite-ng's close() tears down both directions, so the alert is
        written through the record layer directly.
        """
        alert = Alert().create(AlertDescription.close_notify, AlertLevel.warning)
        try:
            for _ in self.tls._sendMsg(alert):
                pass
        except (TLSError, OSError) as e:
            raise TransportError(detail=f"close_notify failed: {e}") from e

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            if not self.tls.closed:
                self.tls.close()
        except (TLSError, OSError) as e:
            print(f"[Connection] Error closing TLS session: {e}")
        finally:
            self.sock.close()


def open_client_socket(host: str, port: int, timeout: Optional[float] = None) -> socket.socket:
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    return sock


def open_listener(host: str, port: int) -> socket.socket:
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    listener.bind((host, port))
    listener.listen(5)
    return listener


def accept_connection(listener: socket.socket) -> Tuple[socket.socket, Tuple]:
    """
    Accept the first connection that carries data

    Readiness probes connect and close without sending anything; they are
    discarded so the server still handles exactly one real peer.
    """
    while True:
        sock, peer_addr = listener.accept()
        try:
            first = sock.recv(1, socket.MSG_PEEK)
        except OSError:
            first = b""
        if first:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            return sock, peer_addr
        sock.close()
