"""The server process: owns its services, starts them and closes them on a signal."""

from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hormmanage import registry as naming
from hormmanage.config import CONF_FILE, MAX_CLOSE_WAIT_TIME, Config, load_config
from hormmanage.message import global_context, init_global_context
from hormmanage.service import Func, Service, ServiceOptions
from hormmanage.transport import TransportOptions
from hormmanage.web_codec import DEFAULT_SERVER_CODEC
from hormmanage.web_transport import WebTransport

FAILED_SERVICE_GRACE = 0.3  # seconds before a failed service stops the server
_STOP_POLL_INTERVAL = 0.2

SERVER_CLOSE_SIGNALS: tuple[signal.Signals, ...] = tuple(
    sig
    for sig in (
        getattr(signal, "SIGINT", None),
        getattr(signal, "SIGTERM", None),
        getattr(signal, "SIGUSR2", None),
    )
    if sig is not None
)


@dataclass
class Description:
    """Describes a server: its name and the handlers it offers."""

    name: str = ""
    funcs: list[Func] = field(default_factory=list)


class Server:
    """One process, one server; a server offers one or more services."""

    def __init__(self) -> None:
        self.services: dict[str, Any] = {}
        self.failed_services: dict[str, Any] = {}
        self._failed_lock = threading.Lock()
        self._stop = threading.Event()
        self._close_lock = threading.Lock()
        self._closed = False

    def add_service(self, name: str, service: Any) -> None:
        """Add ``service`` to the server under ``name``."""
        self.services[name] = service

    def serve(self) -> None:
        """Start every service and block until a close signal or a service failure."""
        if not self.services:
            raise RuntimeError("not have any service")

        errors: list[BaseException] = []

        def run(name: str, service: Any) -> None:
            try:
                service.serve()
            except Exception as exc:
                errors.append(exc)
                with self._failed_lock:
                    self.failed_services[name] = service
                time.sleep(FAILED_SERVICE_GRACE)
                self._stop.set()

        for name, service in self.services.items():
            threading.Thread(target=run, args=(name, service), name=f"serve-{name}",
                             daemon=True).start()

        previous = self._install_signal_handlers()
        try:
            while not self._stop.wait(_STOP_POLL_INTERVAL):
                pass
        finally:
            self._restore_signal_handlers(previous)

        self.close()

        if errors:
            raise errors[0]

    def close(self) -> None:
        """Close every service that did not fail, once, waiting for all of them."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        set_closing()
        with self._failed_lock:
            failed = set(self.failed_services)

        threads = [
            threading.Thread(target=service.close, name=f"close-{name}", daemon=True)
            for name, service in self.services.items()
            if name not in failed
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def _install_signal_handlers(self) -> dict[int, Any]:
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous: dict[int, Any] = {}
        for sig in SERVER_CLOSE_SIGNALS:
            try:
                previous[sig] = signal.signal(sig, lambda *_: self._stop.set())
            except (OSError, ValueError):
                continue
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, Any]) -> None:
        for sig, handler in previous.items():
            try:
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            except (OSError, ValueError):
                continue


def _join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _seconds(milliseconds: int) -> float:
    return milliseconds / 1000.0


def new_service(name: str, protocol: str, cfg: Config) -> Service:
    """Build the service ``name`` speaking ``protocol`` from the configuration."""
    server_cfg = cfg.server
    options = ServiceOptions(
        protocol=protocol,
        service_name=name,
        env=cfg.env,
        machine=cfg.machine,
        timeout=_seconds(server_cfg.timeout),
        max_close_wait_time=_seconds(server_cfg.max_close_wait_time),
        transport_options=TransportOptions(
            service_name=name,
            protocol=protocol,
            network="tcp",
            event_loop_num=server_cfg.event_loop_num,
            idle_timeout=_seconds(server_cfg.idle_time),
        ),
    )
    options.close_wait_time = min(_seconds(server_cfg.close_wait_time), MAX_CLOSE_WAIT_TIME)

    if protocol == "web":
        options.codec = DEFAULT_SERVER_CODEC
        options.transport = WebTransport()
        options.address = _join_host_port(cfg.local_ip, server_cfg.web_port)
        options.transport_options.address = options.address
        options.transport_options.tls_cert_file = server_cfg.tls_cert
        options.transport_options.tls_key_file = server_cfg.tls_key
        options.transport_options.ca_cert_file = server_cfg.ca_cert

    if cfg.register is not None and cfg.register.enable:
        reg = naming.get(options.service_name)
        if reg is None:
            raise RuntimeError(
                f"setup polaris config fail: no registry registered for {options.service_name}"
            )
        options.registry = reg

    return Service(options)


def _configure_logging(cfg: Config) -> None:
    level_name = ""
    for item in cfg.log:
        level_name = str(item.get("level", "") or "")
        if level_name:
            break
    level = logging.getLevelName(level_name.upper()) if level_name else logging.INFO
    if not isinstance(level, int):
        level = logging.INFO
    logging.getLogger("hormmanage").setLevel(level)


def new_server(description: Description, config_path: str | Path = CONF_FILE) -> Server:
    """Load the configuration, build the configured services and register the handlers."""
    try:
        cfg = load_config(config_path)
    except (OSError, ValueError) as exc:
        raise RuntimeError(f"load config fail: {exc}") from exc

    _configure_logging(cfg)
    init_global_context(cfg.env, cfg.machine, cfg.server.name)

    server = Server()
    if cfg.server.web_port > 0:
        web_name = f"web.{cfg.server.name}"
        server.add_service(web_name, new_service(web_name, "web", cfg))

    for service in server.services.values():
        try:
            service.register(description.funcs)
        except Exception as exc:
            raise RuntimeError(f"register service error:{exc}") from exc

    global_context().log.debug("server %s created with %d services",
                               cfg.server.name, len(server.services))
    return server


_closing = False
_closing_lock = threading.Lock()


def set_closing() -> None:
    """Mark the process as closing."""
    global _closing
    with _closing_lock:
        _closing = True


def is_closing() -> bool:
    """Whether the process is closing."""
    with _closing_lock:
        return _closing