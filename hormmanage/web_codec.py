"""HTTP server codec: builds request headers from HTTP requests and writes JSON replies."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Mapping
from urllib.parse import unquote, urlsplit

from hormmanage import head
from hormmanage.head import WebReqHeader, WebRespHeader
from hormmanage.message import Message, ServiceError
from hormmanage.serialization import SERIALIZATION_TYPE_JSON, SERIALIZATION_TYPE_XML

CONTENT_TYPE_SERIALIZATION: dict[str, int] = {
    "application/json": SERIALIZATION_TYPE_JSON,
    "application/xml": SERIALIZATION_TYPE_XML,
}

SERIALIZATION_CONTENT_TYPE: dict[int, str] = {
    SERIALIZATION_TYPE_JSON: "application/json",
    SERIALIZATION_TYPE_XML: "application/xml",
}

_UINT_RE = re.compile(r"[0-9]+")
_INT_RE = re.compile(r"[+-]?[0-9]+")
_UINT64_MAX = (1 << 64) - 1
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


def _parse_uint(value: str) -> int:
    """Parse an unsigned 64-bit decimal; anything invalid gives 0."""
    if not _UINT_RE.fullmatch(value):
        return 0
    number = int(value)
    return number if number <= _UINT64_MAX else 0


def _atoi(value: str) -> int:
    """Parse a signed decimal, clamped to 64 bits; anything invalid gives 0."""
    if not _INT_RE.fullmatch(value):
        return 0
    return min(max(int(value), _INT64_MIN), _INT64_MAX)


def _uint32(value: int) -> int:
    return value & 0xFFFFFFFF


@dataclass
class FrameCodec:
    """One HTTP exchange: the received request and the response being built."""

    method: str = "GET"
    target: str = "/"  # request target: path with optional query
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | BinaryIO = b""
    response_headers: list[tuple[str, str]] = field(default_factory=list)
    response_body: bytearray = field(default_factory=bytearray)

    def __post_init__(self) -> None:
        self._request_headers: dict[str, str] = {}
        for name, value in self.headers.items():
            self._request_headers.setdefault(name.lower(), value)

    @property
    def path(self) -> str:
        """The decoded URL path of the request."""
        return unquote(urlsplit(self.target).path)

    @property
    def raw_query(self) -> str:
        """The undecoded query string of the request."""
        return urlsplit(self.target).query

    def request_header(self, name: str) -> str:
        """Return the first value of request header ``name``, or ``""``."""
        return self._request_headers.get(name.lower(), "")

    def read_body(self) -> bytes:
        """Read the whole request body."""
        if isinstance(self.body, (bytes, bytearray)):
            return bytes(self.body)
        try:
            return self.body.read()
        except OSError as exc:
            raise OSError(f"body readAll: {exc}") from exc

    def response_header(self, name: str) -> str:
        """Return the first value of response header ``name``, or ``""``."""
        lowered = name.lower()
        return next((v for k, v in self.response_headers if k.lower() == lowered), "")

    def add_response_header(self, name: str, value: str) -> None:
        """Append a response header value."""
        self.response_headers.append((name, value))

    def set_response_header(self, name: str, value: str) -> None:
        """Replace all values of response header ``name`` with ``value``."""
        lowered = name.lower()
        self.response_headers = [(k, v) for k, v in self.response_headers if k.lower() != lowered]
        self.response_headers.append((name, value))

    def write(self, data: bytes) -> None:
        """Append ``data`` to the response body."""
        self.response_body.extend(data)


def error_body(error: ServiceError) -> bytes:
    """The JSON reply for an error: its code and message."""
    return json.dumps(
        {"code": error.code, "msg": error.msg}, ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")


def success_body(body: bytes | None) -> bytes:
    """The JSON reply for success, embedding ``body`` as ``data`` when present."""
    if not body:
        return b'{"code":0,"msg":"success"}'
    return b'{"code":0,"msg":"success","data":' + bytes(body) + b"}"


def _frame_codec(msg: Message, action: str) -> FrameCodec:
    fc = msg.frame_codec
    if not isinstance(fc, FrameCodec):
        raise ValueError(f"server {action} missing frame codec in context")
    return fc


def _ip_from_addr(addr: Any) -> str:
    if isinstance(addr, (tuple, list)) and addr:
        return str(addr[0])
    if isinstance(addr, str):
        return addr
    return ""


class ServerCodec:
    """Decodes HTTP requests into messages and encodes replies into HTTP responses."""

    def decode(self, msg: Message, buf: bytes | None = None) -> bytes:
        """Fill ``msg`` from its HTTP request and return the request body."""
        fc = _frame_codec(msg, "decode")
        req_body = self._request_body(fc, msg)
        self._set_request_header(fc, msg)
        return req_body

    def encode(self, msg: Message, body: bytes | None) -> bytes:
        """Write the reply for ``msg`` to its HTTP response and return the bytes written."""
        fc = _frame_codec(msg, "encode")

        fc.add_response_header("X-Content-Type-Options", "nosniff")
        content_type = fc.response_header("Content-Type")
        if not content_type:
            content_type = fc.request_header("Content-Type")
            if fc.method.upper() == "GET" or not content_type:
                content_type = "application/json"
            fc.add_response_header("Content-Type", content_type)

        xml_type = SERIALIZATION_CONTENT_TYPE[SERIALIZATION_TYPE_XML]
        if xml_type in content_type:
            fc.set_response_header("Content-Type", xml_type)

        if msg.server_resp_error is not None:
            data = error_body(msg.server_resp_error)
        else:
            data = success_body(body)
        fc.write(data)
        return data

    @staticmethod
    def _request_body(fc: FrameCodec, msg: Message) -> bytes:
        url_path = fc.path
        if url_path.startswith("/"):
            url_path = url_path[1:]
        msg.call_rpc_name = url_path

        if fc.method.upper() == "GET":
            return fc.raw_query.encode("utf-8")

        content_type = fc.request_header("Content-Type")
        for known, serialization_type in CONTENT_TYPE_SERIALIZATION.items():
            if known in content_type:
                msg.serialization_type = serialization_type
                return fc.read_body()
        return b""

    @staticmethod
    def _set_request_header(fc: FrameCodec, msg: Message) -> None:
        req = WebReqHeader()
        msg.server_req_head = req

        req.request_type = head.REQUEST_TYPE_WEB
        req.callee = msg.call_rpc_name

        if value := fc.request_header(head.VERSION):
            req.version = value
        if value := fc.request_header(head.REQUEST_ID):
            req.request_id = _parse_uint(value)
            msg.request_id = req.request_id
        if value := fc.request_header(head.TIMESTAMP):
            req.timestamp = _parse_uint(value)
        if value := fc.request_header(head.TIMEOUT):
            timeout_ms = _atoi(value)
            req.timeout = _uint32(timeout_ms)
            msg.request_timeout = timeout_ms / 1000.0
        if value := fc.request_header(head.USER_ID):
            req.userid = _parse_uint(value)
        if value := fc.request_header(head.WORKSPACE_ID):
            req.workspace_id = _uint32(_atoi(value))
        if value := fc.request_header(head.CALLER):
            req.caller = value
            msg.caller_service_name = value
        if value := fc.request_header(head.AUTH_RAND):
            req.auth_rand = _uint32(_atoi(value))
        if value := fc.request_header(head.SIGN):
            req.sign = value

        req.ip = _ip_from_addr(msg.remote_addr)

        msg.server_resp_head = WebRespHeader(version=req.version, request_id=req.request_id)


DEFAULT_SERVER_CODEC = ServerCodec()