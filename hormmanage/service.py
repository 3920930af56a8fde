"""A service: routes decoded requests to registered handlers and closes gracefully."""

from __future__ import annotations

import dataclasses
import json
import os
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from hormmanage.config import MAX_CLOSE_WAIT_TIME
from hormmanage.head import WebReqHeader
from hormmanage.message import ErrorCode, Message, ServiceError, global_context
from hormmanage.registry import Registry
from hormmanage.serialization import serialize
from hormmanage.transport import Handler, TransportOptions

CLOSE_SPIN_INTERVAL = 0.1  # seconds between checks for finished requests
CLOSE_SETTLE_TIME = 0.1  # seconds to wait after stopping


@dataclass
class RequestContext:
    """What a handler gets besides the request: its message and time budget."""

    msg: Message
    timeout: float = 0.0  # seconds, 0 means no limit
    deadline: float | None = None  # time.monotonic() value

    @property
    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        """Whether the deadline has passed."""
        return self.deadline is not None and time.monotonic() >= self.deadline


HandlerFunc = Callable[[RequestContext, WebReqHeader, bytes], Any]


@dataclass
class Func:
    """A named handler of one method."""

    name: str
    handler: HandlerFunc


@dataclass
class ServiceOptions:
    """Options of one service; times are in seconds."""

    machine: str = ""
    env: str = ""
    service_name: str = ""
    address: str = ""
    protocol: str = ""
    timeout: float = 0.0

    registry: Registry | None = None
    transport: Any = None
    transport_options: TransportOptions = field(default_factory=TransportOptions)
    codec: Any = None

    close_wait_time: float = 0.0
    max_close_wait_time: float = 0.0


def _one_line(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace").replace("\n", " ").replace("\r", " ")


def _header_json(req_header: Any) -> str:
    if dataclasses.is_dataclass(req_header) and not isinstance(req_header, type):
        return json.dumps(dataclasses.asdict(req_header), ensure_ascii=False, default=str)
    return str(req_header)


def _response_json(rsp: Any) -> str:
    try:
        return json.dumps(rsp, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(rsp)


class Service(Handler):
    """Serves requests from a transport, dispatching them by method name."""

    def __init__(
        self,
        options: ServiceOptions,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.options = options
        self.handlers: dict[str, HandlerFunc] = {}
        self.metrics: Counter[str] = Counter()
        self.bound_address: Any = None
        self.ready = threading.Event()
        self._sleep = sleep
        self._stopped = threading.Event()
        self._active = 0
        self._active_lock = threading.Lock()
        options.transport_options.handler = self

    @property
    def active_count(self) -> int:
        """Number of requests being handled while graceful close is tracked."""
        with self._active_lock:
            return self._active

    @property
    def _tracks_active(self) -> bool:
        return self.options.max_close_wait_time > self.options.close_wait_time

    def register(self, funcs: Iterable[Func]) -> None:
        """Register handlers; a name already registered keeps its first handler."""
        for func in funcs:
            self.handlers.setdefault(func.name, func.handler)

    def serve(self) -> None:
        """Start the transport, announce the service, and block until closed."""
        opts = self.options
        pid = os.getpid()
        log = global_context().log

        try:
            self.bound_address = opts.transport.serve(opts.transport_options)
        except Exception as exc:
            log.error("[%d] service %s ListenAndServe fail:%s", pid, opts.service_name, exc)
            raise

        if opts.registry is not None:
            try:
                opts.registry.register(opts.service_name, opts.address)
            except Exception as exc:
                log.error("[%d] service %s register fail: %s", pid, opts.service_name, exc)
                raise

        log.info(
            "[%d] %s service %s start success, listening on [%s] ...",
            pid, opts.protocol, opts.service_name, opts.address,
        )
        self.ready.set()
        self._stopped.wait()

    def handle(self, msg: Message, req_buf: bytes) -> bytes:
        """Decode, dispatch and encode one request; return the encoded reply."""
        if self._tracks_active:
            with self._active_lock:
                self._active += 1
        try:
            return self._handle_message(msg, req_buf)
        finally:
            if self._tracks_active:
                with self._active_lock:
                    self._active -= 1

    def close(self) -> None:
        """Deregister, wait for requests to finish, then stop serving."""
        opts = self.options
        close_wait_time = max(opts.max_close_wait_time, MAX_CLOSE_WAIT_TIME)
        pid = os.getpid()
        log = global_context().log

        log.info("[%d] %s service %s, closing ...", pid, opts.protocol, opts.service_name)

        if opts.registry is not None:
            try:
                opts.registry.deregister(opts.service_name)
            except Exception as exc:
                log.error("[%d] deregister service %s fail: %s", pid, opts.service_name, exc)

        waiting = self._wait_before_close()
        remaining = close_wait_time - waiting
        if remaining > 1e-9:
            self._sleep(remaining)

        self._stopped.set()
        shutdown = getattr(opts.transport, "shutdown", None)
        if callable(shutdown):
            shutdown()

        self._sleep(CLOSE_SETTLE_TIME)
        log.info("[%d] %s service %s, closed", pid, opts.protocol, opts.service_name)

    def _wait_before_close(self) -> float:
        opts = self.options
        log = global_context().log
        waiting = 0.0

        if opts.close_wait_time > 0:
            log.info(
                "[%d] service %s remain %d requests wait %s time when closing service",
                os.getpid(), opts.service_name, self.active_count, opts.close_wait_time,
            )
            waiting += opts.close_wait_time
            self._sleep(opts.close_wait_time)

        if self._tracks_active:
            span_ms = round((opts.max_close_wait_time - opts.close_wait_time) * 1000)
            spin_count = span_ms // round(CLOSE_SPIN_INTERVAL * 1000)
            for _ in range(spin_count):
                if self.active_count <= 0:
                    break
                waiting += CLOSE_SPIN_INTERVAL
                self._sleep(CLOSE_SPIN_INTERVAL)
            log.info(
                "[%d] service %s remain %d requests when closing service",
                os.getpid(), opts.service_name, self.active_count,
            )

        return waiting

    def _handle_message(self, msg: Message, req_buf: bytes) -> bytes:
        try:
            req_body = self._decode(msg, req_buf)
        except ServiceError as exc:
            return self._encode(msg, None, exc)

        if msg.server_resp_error is not None:
            return self._encode(msg, None, msg.server_resp_error)

        try:
            rsp = self._dispatch(msg, req_body)
        except ServiceError as exc:
            self.metrics["ServiceHandleFail"] += 1
            return self._encode(msg, None, exc)

        return self._handle_response(msg, rsp)

    def _decode(self, msg: Message, req_buf: bytes) -> bytes:
        try:
            req_body = self.options.codec.decode(msg, req_buf)
        except Exception as exc:
            self.metrics["ServiceCodecDecodeFail"] += 1
            raise ServiceError(ErrorCode.SERVER_DECODE_FAIL, f"service codec Decode: {exc}") from exc
        msg.env = self.options.env
        msg.callee_service_name = self.options.service_name
        return req_body

    def _encode(self, msg: Message, body: bytes | None, error: BaseException | None) -> bytes:
        if error is not None:
            msg.set_response_error(error)
        try:
            return self.options.codec.encode(msg, body)
        except Exception as exc:
            self.metrics["ServiceCodecEncodeFail"] += 1
            msg.log.error("service %s encode fail: %s", self.options.service_name, exc)
            raise

    def _handle_response(self, msg: Message, rsp: Any) -> bytes:
        try:
            body = serialize(msg, rsp)
        except Exception as exc:
            self.metrics["ServiceCodecMarshalFail"] += 1
            error = ServiceError(ErrorCode.SERVER_ENCODE_FAIL, f"service codec Marshal: {exc}")
            return self._encode(msg, None, error)
        return self._encode(msg, body, None)

    def _dispatch(self, msg: Message, req_body: bytes) -> Any:
        method = msg.callee_method
        handler = self.handlers.get(method) or self.handlers.get("default")
        if handler is None:
            self.metrics["ServiceHandleRPCNameInvalid"] += 1
            raise ServiceError(
                ErrorCode.SERVER_NO_FUNC,
                f"service handle: rpc name {method} invalid, "
                f"current service:{msg.callee_service_name}",
            )

        timeout = self.options.timeout
        req_timeout = msg.request_timeout
        if req_timeout > 0 and (req_timeout < timeout or timeout == 0):
            timeout = req_timeout

        ctx = RequestContext(msg=msg)
        if timeout > 0:
            ctx.timeout = timeout
            ctx.deadline = time.monotonic() + timeout

        return self._api_handle(ctx, handler, msg, req_body)

    def _api_handle(self, ctx: RequestContext, handler: HandlerFunc, msg: Message,
                    req_body: bytes) -> Any:
        req_header = msg.server_req_head
        if req_header is None:
            req_header = WebReqHeader()
        self._init_logger(msg, req_header)

        log = msg.log
        log.info("[HEADER] %s", _header_json(req_header))
        log.info("[REQUEST] %s", _one_line(req_body))

        start = time.monotonic()
        try:
            rsp = handler(ctx, req_header, req_body)
        except ServiceError as exc:
            error: ServiceError | None = exc
        except Exception as exc:
            self.metrics["PanicNum"] += 1
            error = ServiceError(ErrorCode.PANIC, str(exc))
        else:
            error = None

        during_ms = int((time.monotonic() - start) * 1000)
        if error is not None:
            log.error(
                "[RESPONSE] %s during=%d seq=%d code=%d files=service.py _api_handle",
                error.msg, during_ms, msg.request_id, error.code,
            )
            raise error
        log.info("[RESPONSE] %s during=%d seq=%d", _response_json(rsp), during_ms, msg.request_id)
        return rsp

    def _init_logger(self, msg: Message, req_header: Any) -> None:
        remote = msg.remote_addr
        if isinstance(remote, (tuple, list)) and len(remote) >= 2:
            remote_str = f"{remote[0]}:{remote[1]}"
        else:
            remote_str = "" if remote is None else str(remote)

        fields: dict[str, Any] = {
            "callee": msg.callee_service_name,
            "remote": remote_str,
            "request_id": msg.request_id,
            "span_id": msg.span_id,
            "machine": self.options.machine,
            "userid": getattr(req_header, "userid", 0),
        }
        if msg.caller_service_name:
            fields["caller"] = msg.caller_service_name
        msg.bind_logger(**fields)