import io
import json

import pytest

from hormmanage import head
from hormmanage.head import WebRespHeader
from hormmanage.message import Message, ServiceError
from hormmanage.serialization import SERIALIZATION_TYPE_JSON, SERIALIZATION_TYPE_XML
from hormmanage.web_codec import FrameCodec, ServerCodec, error_body, success_body

CODEC = ServerCodec()


def make_msg(method="GET", target="/", headers=None, body=b"", remote=("10.0.0.1", 5000)):
    fc = FrameCodec(method=method, target=target, headers=headers or {}, body=body)
    return Message(frame_codec=fc, remote_addr=remote), fc


def test_decode_get_returns_query_and_route():
    msg, _ = make_msg(target="/user/find?id=1&name=x")
    assert CODEC.decode(msg, b"") == b"id=1&name=x"
    assert msg.call_rpc_name == "user/find"
    assert msg.server_req_head.callee == "user/find"
    assert msg.server_req_head.request_type == head.REQUEST_TYPE_WEB


def test_decode_post_json_reads_body():
    msg, _ = make_msg("POST", "/api", {"Content-Type": "application/json"}, b'{"a":1}')
    msg.serialization_type = SERIALIZATION_TYPE_XML
    assert CODEC.decode(msg, b"") == b'{"a":1}'
    assert msg.serialization_type == SERIALIZATION_TYPE_JSON


def test_decode_post_xml_from_stream():
    msg, _ = make_msg(
        "POST", "/api", {"content-type": "application/xml; charset=utf-8"}, io.BytesIO(b"<a/>")
    )
    assert CODEC.decode(msg, b"") == b"<a/>"
    assert msg.serialization_type == SERIALIZATION_TYPE_XML


def test_decode_post_unknown_content_type_gives_empty_body():
    msg, _ = make_msg("POST", "/api", {"Content-Type": "text/plain"}, b"hello")
    assert CODEC.decode(msg, b"") == b""


def test_decode_headers():
    headers = {
        head.VERSION: "1.2",
        head.REQUEST_ID: "123",
        head.TIMESTAMP: "1700000000000",
        head.TIMEOUT: "1500",
        head.USER_ID: "42",
        head.WORKSPACE_ID: "7",
        head.CALLER: "caller.svc",
        head.AUTH_RAND: "99",
        head.SIGN: "abc",
    }
    msg, _ = make_msg(target="/x", headers=headers)
    CODEC.decode(msg, b"")
    req = msg.server_req_head
    assert req.version == "1.2"
    assert req.request_id == 123 and msg.request_id == 123
    assert req.timestamp == 1700000000000
    assert req.timeout == 1500
    assert msg.request_timeout == pytest.approx(1.5)
    assert req.userid == 42
    assert req.workspace_id == 7
    assert req.caller == "caller.svc" and msg.caller_service_name == "caller.svc"
    assert req.auth_rand == 99
    assert req.sign == "abc"
    assert req.ip == "10.0.0.1"
    assert msg.server_resp_head == WebRespHeader(version="1.2", request_id=123)


def test_decode_invalid_numbers_become_zero():
    msg, _ = make_msg(headers={head.REQUEST_ID: "abc", head.USER_ID: "-5", head.TIMEOUT: "x"})
    CODEC.decode(msg, b"")
    assert msg.server_req_head.request_id == 0
    assert msg.server_req_head.userid == 0
    assert msg.request_timeout == 0


def test_decode_without_frame_codec():
    with pytest.raises(ValueError):
        CODEC.decode(Message(), b"")


def test_encode_without_frame_codec():
    with pytest.raises(ValueError):
        CODEC.encode(Message(), None)


def test_encode_success_without_body():
    msg, fc = make_msg()
    assert CODEC.encode(msg, None) == b'{"code":0,"msg":"success"}'
    assert bytes(fc.response_body) == b'{"code":0,"msg":"success"}'
    assert fc.response_header("X-Content-Type-Options") == "nosniff"
    assert fc.response_header("Content-Type") == "application/json"


def test_encode_success_with_body():
    msg, fc = make_msg()
    CODEC.encode(msg, b'{"k":[1,2]}')
    assert json.loads(bytes(fc.response_body)) == {"code": 0, "msg": "success", "data": {"k": [1, 2]}}


def test_encode_error():
    msg, fc = make_msg()
    msg.set_response_error(ServiceError(11, "no func"))
    CODEC.encode(msg, b'{"ignored":true}')
    assert json.loads(bytes(fc.response_body)) == {"code": 11, "msg": "no func"}


def test_encode_post_keeps_request_content_type():
    msg, fc = make_msg("POST", "/x", {"Content-Type": "application/json; charset=utf-8"})
    CODEC.encode(msg, None)
    assert fc.response_header("Content-Type") == "application/json; charset=utf-8"


def test_encode_xml_content_type_normalised():
    msg, fc = make_msg("POST", "/x", {"Content-Type": "application/xml; charset=utf-8"})
    CODEC.encode(msg, None)
    values = [v for k, v in fc.response_headers if k.lower() == "content-type"]
    assert values == ["application/xml"]


def test_encode_get_ignores_request_content_type():
    msg, fc = make_msg("GET", "/x", {"Content-Type": "text/plain"})
    CODEC.encode(msg, None)
    assert fc.response_header("Content-Type") == "application/json"


def test_encode_keeps_existing_response_content_type():
    msg, fc = make_msg()
    fc.add_response_header("Content-Type", "text/csv")
    CODEC.encode(msg, None)
    assert fc.response_header("Content-Type") == "text/csv"


def test_error_body_round_trip():
    data = error_body(ServiceError(999, "système"))
    assert json.loads(data.decode("utf-8")) == {"code": 999, "msg": "système"}


def test_success_body_embeds_data():
    assert success_body(b"") == b'{"code":0,"msg":"success"}'
    assert json.loads(success_body(b'"v"'))["data"] == "v"


def test_frame_codec_first_header_wins_and_set_replaces():
    fc = FrameCodec(headers={"X-A": "1"})
    assert fc.request_header("x-a") == "1"
    fc.add_response_header("X-B", "1")
    fc.add_response_header("X-B", "2")
    fc.set_response_header("x-b", "3")
    assert [v for k, v in fc.response_headers if k.lower() == "x-b"] == ["3"]