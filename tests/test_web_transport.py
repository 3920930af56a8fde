import http.client
import json
import socket

import pytest

from hormmanage.transport import Handler, TransportOptions
from hormmanage.web_codec import ServerCodec
from hormmanage.web_transport import WebTransport, load_ca_certs

CODEC = ServerCodec()


class EchoHandler(Handler):
    def handle(self, msg, req):
        body = CODEC.decode(msg, req)
        data = json.dumps({"path": msg.call_rpc_name, "body": body.decode("utf-8")}).encode()
        return CODEC.encode(msg, data)


class FailingHandler(Handler):
    def handle(self, msg, req):
        raise RuntimeError("boom")


@pytest.fixture
def served():
    transport = WebTransport()
    started = []

    def start(handler):
        address = transport.serve(TransportOptions(address="127.0.0.1:0", handler=handler))
        started.append(address)
        return address

    yield transport, start
    transport.shutdown()


def request(address, method, target, body=None, headers=None):
    conn = http.client.HTTPConnection(address[0], address[1], timeout=5)
    try:
        conn.request(method, target, body=body, headers=headers or {})
        resp = conn.getresponse()
        return resp.status, dict(resp.getheaders()), resp.read()
    finally:
        conn.close()


def test_post_json_round_trip(served):
    _, start = served
    address = start(EchoHandler())
    status, headers, data = request(
        address, "POST", "/echo/path", b'{"a":1}', {"Content-Type": "application/json"}
    )
    assert status == 200
    assert json.loads(data) == {
        "code": 0,
        "msg": "success",
        "data": {"path": "echo/path", "body": '{"a":1}'},
    }
    assert headers["X-Content-Type-Options"] == "nosniff"
    assert headers["Content-Type"] == "application/json"


def test_get_passes_query(served):
    _, start = served
    address = start(EchoHandler())
    _, _, data = request(address, "GET", "/find?a=1")
    assert json.loads(data)["data"] == {"path": "find", "body": "a=1"}


def test_failing_handler_gives_empty_reply(served):
    _, start = served
    address = start(FailingHandler())
    status, _, data = request(address, "GET", "/x")
    assert status == 200
    assert data == b""


def test_serve_without_handler():
    with pytest.raises(ValueError):
        WebTransport().serve(TransportOptions(address="127.0.0.1:0"))


def test_serve_twice_raises(served):
    transport, start = served
    start(EchoHandler())
    with pytest.raises(RuntimeError):
        transport.serve(TransportOptions(address="127.0.0.1:0", handler=EchoHandler()))


def test_shutdown_stops_listening():
    transport = WebTransport()
    address = transport.serve(TransportOptions(address="127.0.0.1:0", handler=EchoHandler()))
    status, _, data = request(address, "GET", "/before/shutdown")
    assert status == 200
    assert json.loads(data)["data"]["path"] == "before/shutdown"
    transport.shutdown()
    with pytest.raises(OSError):
        socket.create_connection(address, timeout=2).close()


def test_uses_given_listener():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen()
    expected = listener.getsockname()
    transport = WebTransport()
    try:
        address = transport.serve(TransportOptions(handler=EchoHandler(), listener=listener))
        assert address == expected
        _, _, data = request(address, "GET", "/via/listener")
        assert json.loads(data)["data"]["path"] == "via/listener"
    finally:
        transport.shutdown()


def test_invalid_ca_file_rejected(tmp_path):
    ca_file = tmp_path / "ca.pem"
    ca_file.write_text("not a certificate")
    options = TransportOptions(
        address="127.0.0.1:0", handler=EchoHandler(), ca_cert_file=str(ca_file)
    )
    with pytest.raises(ValueError):
        WebTransport().serve(options)


def test_load_ca_certs_root_means_system():
    assert load_ca_certs("root") is None


def test_load_ca_certs_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_ca_certs(str(tmp_path / "missing.pem"))


def test_load_ca_certs_without_certificate(tmp_path):
    ca_file = tmp_path / "ca.pem"
    ca_file.write_text("plain text")
    with pytest.raises(ValueError):
        load_ca_certs(str(ca_file))


def test_load_ca_certs_returns_pem(tmp_path):
    pem = "-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n"
    ca_file = tmp_path / "ca.pem"
    ca_file.write_text(pem)
    assert load_ca_certs(str(ca_file)) == pem