"""Per-request message state and the process-wide global message."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

_BASE_LOGGER = logging.getLogger("hormmanage")


class ErrorCode(IntEnum):
    """Error codes reported to clients."""

    UNKNOWN = -1
    SERVER_DECODE_FAIL = 1
    SERVER_ENCODE_FAIL = 2
    SERVER_NO_FUNC = 11
    SERVER_TIMEOUT = 21
    PANIC = 101
    SYSTEM = 999
    WEB_EMAIL_SEND_FAILED = 4001


class ServiceError(Exception):
    """An error carrying a numeric code and a message."""

    def __init__(self, code: int, msg: str) -> None:
        super().__init__(msg)
        self.code = int(code)
        self.msg = msg

    def __str__(self) -> str:
        return self.msg

    def __repr__(self) -> str:
        return f"ServiceError(code={self.code}, msg={self.msg!r})"


@dataclass
class Message:
    """State carried alongside one request through codec, service and handler."""

    env: str = ""
    callee_service_name: str = ""
    caller_service_name: str = ""
    call_rpc_name: str = ""
    request_id: int = 0
    span_id: int = 0
    request_timeout: float = 0.0  # seconds
    serialization_type: int = 0
    frame_codec: Any = None
    local_addr: Any = None
    remote_addr: Any = None
    server_req_head: Any = None
    server_resp_head: Any = None
    server_resp_error: ServiceError | None = None
    logger: logging.Logger | logging.LoggerAdapter | None = None

    @property
    def callee_method(self) -> str:
        """The method the request is routed to."""
        return self.call_rpc_name

    def set_response_error(self, error: BaseException) -> None:
        """Record the error to send back, wrapping foreign errors in ServiceError."""
        if isinstance(error, ServiceError):
            self.server_resp_error = error
        else:
            self.server_resp_error = ServiceError(ErrorCode.UNKNOWN, str(error))

    def bind_logger(self, **fields: Any) -> logging.LoggerAdapter:
        """Attach a logger carrying ``fields`` on top of the current ones."""
        current = self.logger if self.logger is not None else _BASE_LOGGER
        if isinstance(current, logging.LoggerAdapter):
            merged = {**(current.extra or {}), **fields}
            adapter = logging.LoggerAdapter(current.logger, merged)
        else:
            adapter = logging.LoggerAdapter(current, dict(fields))
        self.logger = adapter
        return adapter

    @property
    def log(self) -> logging.Logger | logging.LoggerAdapter:
        """The logger of this message, or the package logger."""
        return self.logger if self.logger is not None else _BASE_LOGGER


_global_message: Message | None = None


def init_global_context(env: str, container: str, callee: str) -> Message:
    """Create the process-wide message used for server-level logging."""
    global _global_message
    msg = Message(env=env, callee_service_name=callee)
    msg.bind_logger(callee=callee, container=container)
    _global_message = msg
    return msg


def global_context() -> Message:
    """Return the process-wide message, creating an empty one if needed."""
    global _global_message
    if _global_message is None:
        _global_message = Message()
    return _global_message