"""Web request and response headers."""

from __future__ import annotations

from dataclasses import dataclass

VERSION = "web-version"  # client version
REQUEST_ID = "web-request-id"  # unique request id
TIMESTAMP = "web-timestamp"  # request timestamp in milliseconds
TIMEOUT = "web-timeout"  # request timeout in milliseconds
USER_ID = "web-userid"
WORKSPACE_ID = "web-workspace-id"
CALLER = "web-caller"
AUTH_RAND = "web-auth-rand"  # random number in 0-99999999
SIGN = "web-sign"  # request signature

REQUEST_TYPE_WEB = "web"


@dataclass
class WebReqHeader:
    """Header of an incoming web request."""

    request_type: str = ""
    callee: str = ""
    version: str = ""
    request_id: int = 0
    timestamp: int = 0
    timeout: int = 0
    userid: int = 0
    workspace_id: int = 0
    caller: str = ""
    auth_rand: int = 0
    sign: str = ""
    ip: str = ""


@dataclass
class WebRespHeader:
    """Header of an outgoing web response."""

    version: str = ""
    request_id: int = 0


def resp_from_req_header(req_header: WebReqHeader) -> WebRespHeader:
    """Build the response header that answers ``req_header``."""
    return WebRespHeader(version=req_header.version, request_id=req_header.request_id)