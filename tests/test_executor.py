import socket
import time

import pytest

from helpers import CERT_DIR, PeerThread
from interop_framework.connection import TlsliteConnection, credentials_for
from interop_framework.errors import GreetingMismatch, HandshakeError, TransportError, UncleanClose
from interop_framework.executor import (
    CLIENT_GREETING_BYTES, SERVER_GREETING_BYTES, ProtocolExecutor,
)
from interop_framework.scenarios import (
    BulkTransfer, GracefulClose, Handshake, Role, Scenario, SendGreeting, get_scenario,
)
from interop_framework.tagged_stream import TaggedStreamCodec

SMALL_CODEC = dict(segment_size=64, segments_per_group=4)


def run_pair(scenario, client_conn, server_conn, codec_kwargs=None):
    codec_kwargs = codec_kwargs or SMALL_CODEC
    server = ProtocolExecutor(scenario, Role.SERVER, server_conn,
                              codec=TaggedStreamCodec(**codec_kwargs), log=lambda msg: None)
    client = ProtocolExecutor(scenario, Role.CLIENT, client_conn,
                              codec=TaggedStreamCodec(**codec_kwargs), log=lambda msg: None)
    peer = PeerThread(server.run)
    peer.start()
    client_verdict = client.run()
    peer.join(timeout=30)
    assert not peer.is_alive()
    assert peer.error is None
    return client_verdict, peer.result


def run_client_against(scenario, client_conn, server_side, codec=None):
    """Run the real client executor against a hand-written server"""
    peer = PeerThread(server_side)
    peer.start()
    verdict = ProtocolExecutor(scenario, Role.CLIENT, client_conn, codec=codec, log=lambda msg: None).run()
    peer.join(timeout=30)
    assert peer.error is None
    return verdict


@pytest.mark.parametrize("scenario_id", ["handshake", "greeting", "mtls_request_response"])
def test_scenarios_pass_between_conforming_peers(plain_pair, scenario_id):
    client_conn, server_conn = plain_pair
    scenario = get_scenario(scenario_id)

    client, server = run_pair(scenario, client_conn, server_conn)

    assert client.passed, client.failure
    assert server.passed, server.failure
    assert client.steps_completed == len(scenario.steps)
    assert client_conn.closed and server_conn.closed


def test_bulk_download_passes(plain_pair):
    client_conn, server_conn = plain_pair
    scenario = get_scenario("large_data_download").with_bulk_size(12)

    client, server = run_pair(scenario, client_conn, server_conn)

    assert client.passed, client.failure
    assert server.passed, server.failure
    assert server.key_updates == 0


@pytest.mark.parametrize("size_gb, interval, expected", [(256, 1, 256), (10, 3, 4), (20, 5, 4)])
def test_key_update_cadence(plain_pair, size_gb, interval, expected):
    client_conn, server_conn = plain_pair
    scenario = Scenario(id="key_updates", steps=(
        Handshake(), SendGreeting(), BulkTransfer(size_gb, key_update_interval_gb=interval), GracefulClose(),
    ))

    client, server = run_pair(scenario, client_conn, server_conn,
                              codec_kwargs=dict(segment_size=16, segments_per_group=2))

    assert client.passed, client.failure
    assert server.passed, server.failure
    assert server.key_updates == expected
    assert abs(server.key_updates - size_gb / interval) <= 0.1 * size_gb / interval + 1


def test_truncated_server_greeting(plain_pair):
    client_conn, server_conn = plain_pair

    def server_side():
        server_conn.handshake()
        server_conn.read_exact(len(CLIENT_GREETING_BYTES))
        server_conn.write(SERVER_GREETING_BYTES[:-1])
        server_conn.shutdown_write()

    verdict = run_client_against(get_scenario("greeting"), client_conn, server_side)

    assert not verdict.passed
    assert isinstance(verdict.failure, GreetingMismatch)
    assert verdict.reason == "unexpected server greeting"


def test_server_greeting_with_trailing_byte(plain_pair):
    client_conn, server_conn = plain_pair

    def server_side():
        server_conn.handshake()
        server_conn.read_exact(len(CLIENT_GREETING_BYTES))
        server_conn.write(SERVER_GREETING_BYTES + b"!")
        # keep the connection open until the client hangs up
        try:
            server_conn.read(1)
        except TransportError:
            pass

    verdict = run_client_against(get_scenario("greeting"), client_conn, server_side)

    assert not verdict.passed
    assert verdict.reason == "unexpected server greeting"


def test_wrong_client_greeting_reported_by_server(plain_pair):
    client_conn, server_conn = plain_pair
    scenario = get_scenario("greeting")

    def client_side():
        client_conn.handshake()
        client_conn.write(CLIENT_GREETING_BYTES.upper())
        client_conn.read(1)

    peer = PeerThread(client_side)
    peer.start()
    verdict = ProtocolExecutor(scenario, Role.SERVER, server_conn, log=lambda msg: None).run()
    peer.join(timeout=30)

    assert not verdict.passed
    assert verdict.reason == "unexpected client greeting"
    assert verdict.steps_completed == 1


def test_data_after_half_close_is_unclean(plain_pair):
    client_conn, server_conn = plain_pair

    def server_side():
        server_conn.handshake()
        server_conn.read(1)
        server_conn.write(b"x")

    verdict = run_client_against(get_scenario("handshake"), client_conn, server_side)

    assert not verdict.passed
    assert isinstance(verdict.failure, UncleanClose)
    assert verdict.reason == "peer did not close cleanly"


def test_bad_preamble_fails_handshake(plain_pair):
    client_conn, server_conn = plain_pair
    client_conn.sock.sendall(b"GET / HTTP/1.1\r\n")
    client_conn.shutdown_write()

    verdict = ProtocolExecutor(get_scenario("handshake"), Role.SERVER, server_conn, log=lambda msg: None).run()

    assert not verdict.passed
    assert isinstance(verdict.failure, HandshakeError)
    assert verdict.steps_completed == 0


def test_corrupted_bulk_stream_fails_client(plain_pair):
    client_conn, server_conn = plain_pair
    codec = TaggedStreamCodec(**SMALL_CODEC)
    scenario = get_scenario("large_data_download").with_bulk_size(3)

    def server_side():
        server_conn.handshake()
        server_conn.read_exact(len(CLIENT_GREETING_BYTES))
        segment = bytearray(codec.segment_size)
        # the second group repeats the first group's tag
        for _ in range(codec.segments_per_group + 1):
            server_conn.write(segment)
        server_conn.shutdown_write()

    verdict = run_client_against(scenario, client_conn, server_side, codec=codec)

    assert not verdict.passed
    assert verdict.reason == "unexpected tag value"
    assert verdict.failure.segment == 4
    assert verdict.failure.offset == 4 * codec.segment_size
    assert verdict.failure.expected == 1
    assert verdict.failure.observed == 0


def test_late_byte_after_server_greeting(plain_pair):
    client_conn, server_conn = plain_pair

    def server_side():
        server_conn.handshake()
        server_conn.read_exact(len(CLIENT_GREETING_BYTES))
        server_conn.write(SERVER_GREETING_BYTES)
        time.sleep(0.3)
        server_conn.write(b"!")
        try:
            server_conn.read(1)
        except TransportError:
            pass

    verdict = run_client_against(get_scenario("greeting"), client_conn, server_side)

    assert not verdict.passed
    assert isinstance(verdict.failure, GreetingMismatch)
    assert verdict.reason == "unexpected server greeting"


def test_late_byte_after_client_greeting(plain_pair):
    client_conn, server_conn = plain_pair

    def client_side():
        client_conn.handshake()
        client_conn.write(CLIENT_GREETING_BYTES)
        client_conn.read_exact(len(SERVER_GREETING_BYTES))
        time.sleep(0.3)
        client_conn.write(b"!")
        client_conn.shutdown_write()
        client_conn.read(1)

    peer = PeerThread(client_side)
    peer.start()
    verdict = ProtocolExecutor(get_scenario("greeting"), Role.SERVER, server_conn, log=lambda msg: None).run()
    peer.join(timeout=30)

    assert not verdict.passed
    assert verdict.reason == "unexpected client greeting"


@pytest.fixture
def tls_pair():
    """tlslite-ng client and server over a connected socketpair"""
    client_sock, server_sock = socket.socketpair()
    client = TlsliteConnection(client_sock, Role.CLIENT, server_name='localhost')
    server = TlsliteConnection(server_sock, Role.SERVER,
                               credentials=credentials_for(Role.SERVER, CERT_DIR, mutual_auth=False))
    yield client, server
    client.close()
    server.close()


def test_key_updates_over_tls(tls_pair):
    client_conn, server_conn = tls_pair
    scenario = get_scenario("large_data_download_with_frequent_key_updates").with_bulk_size(5)

    client, server = run_pair(scenario, client_conn, server_conn,
                              codec_kwargs=dict(segment_size=1000, segments_per_group=3))

    assert client.passed, client.failure
    assert server.passed, server.failure
    assert server.key_updates == 5
    assert client.key_updates == 0
    assert client.steps_completed == len(scenario.steps)
