"""Server configuration file loading."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from hormmanage.registry import RegistryConfig

CONF_FILE = "./server.yaml"
DEFAULT_IDLE_TIMEOUT = 60000  # ms
MAX_CLOSE_WAIT_TIME = 10.0  # seconds


def _mapping(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a mapping, got {type(value).__name__}")
    return value


def _str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ValueError(f"{key} must be a scalar")
    return str(value)


def _int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    return value


def _port(data: dict[str, Any], key: str) -> int:
    value = _int(data, key)
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{key} out of range: {value}")
    return value


@dataclass
class ServerSettings:
    """The ``server`` section: name, ports, timeouts (ms) and TLS files."""

    name: str = ""
    close_wait_time: int = 0
    max_close_wait_time: int = 0
    rpc_port: int = 0
    http_port: int = 0
    web_port: int = 0
    timeout: int = 0
    idle_time: int = 0
    event_loop_num: int = 0
    tls_key: str = ""
    tls_cert: str = ""
    ca_cert: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Build the settings from the ``server`` mapping."""
        return cls(
            name=_str(data, "name"),
            close_wait_time=_int(data, "close_wait_time"),
            max_close_wait_time=_int(data, "max_close_wait_time"),
            rpc_port=_port(data, "rpc_port"),
            http_port=_port(data, "http_port"),
            web_port=_port(data, "web_port"),
            timeout=_int(data, "timeout"),
            idle_time=_int(data, "idle_time"),
            event_loop_num=_int(data, "event_loop_num"),
            tls_key=_str(data, "tls_key"),
            tls_cert=_str(data, "tls_cert"),
            ca_cert=_str(data, "ca_cert"),
        )


@dataclass
class Config:
    """The whole server configuration."""

    env: str = ""
    machine: str = ""
    machine_id: int = 0
    local_ip: str = ""
    server: ServerSettings = field(default_factory=ServerSettings)
    log: list[dict[str, Any]] = field(default_factory=list)
    register: RegistryConfig | None = None


def parse_config(text: str | bytes) -> Config:
    """Parse YAML configuration text; raises ValueError when it is malformed."""
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid configuration: {exc}") from exc
    data = _mapping(raw, "configuration")

    log = data.get("log") or []
    if not isinstance(log, list) or not all(isinstance(item, dict) for item in log):
        raise ValueError("log must be a list of mappings")

    return Config(
        env=_str(data, "env"),
        machine=_str(data, "machine"),
        machine_id=_int(data, "machine_id"),
        local_ip=_str(data, "local_ip"),
        server=ServerSettings.from_dict(_mapping(data.get("server"), "server")),
        log=[dict(item) for item in log],
        register=RegistryConfig.from_dict(data.get("register")),
    )


_current: Config | None = None
_current_lock = threading.Lock()


def load_config(path: str | Path = CONF_FILE) -> Config:
    """Load the configuration file, apply the default idle time and make it current."""
    global _current
    cfg = parse_config(Path(path).read_bytes())
    cfg.server.idle_time = DEFAULT_IDLE_TIMEOUT
    with _current_lock:
        _current = cfg
    return cfg


def current_config() -> Config:
    """Return the configuration loaded last; raises RuntimeError if none was loaded."""
    with _current_lock:
        if _current is None:
            raise RuntimeError("configuration not loaded")
        return _current