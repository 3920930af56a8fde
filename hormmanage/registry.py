"""Name-service registries and local network address lookup."""

from __future__ import annotations

import ipaddress
import socket
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import psutil

DEFAULT_WEIGHT = 100
DEFAULT_TTL = 5


class Registry(ABC):
    """Announces a service to a name service and withdraws it."""

    @abstractmethod
    def register(self, service: str, address: str) -> None:
        """Announce ``service`` as reachable at ``address``."""

    @abstractmethod
    def deregister(self, service: str) -> None:
        """Withdraw ``service`` from the name service."""


@dataclass
class Location:
    """Where an instance runs."""

    region: str = ""
    zone: str = ""
    campus: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Location | None:
        """Build a location from its configuration mapping."""
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError("register location must be a mapping")
        return cls(
            region=str(data.get("region", "") or ""),
            zone=str(data.get("zone", "") or ""),
            campus=str(data.get("compus", "") or ""),
        )


@dataclass
class RegistryConfig:
    """Configuration of name-service registration."""

    enable: bool = False
    version: str = ""
    ttl: int = 0  # seconds between instance health checks
    token: str = ""
    debug: bool = False
    location: Location | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RegistryConfig | None:
        """Build a registry configuration from its configuration mapping."""
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError("register must be a mapping")
        ttl = data.get("ttl", 0) or 0
        if isinstance(ttl, bool) or not isinstance(ttl, int):
            raise ValueError(f"register ttl must be an integer, got {ttl!r}")
        return cls(
            enable=bool(data.get("enable", False)),
            version=str(data.get("version", "") or ""),
            ttl=ttl,
            token=str(data.get("token", "") or ""),
            debug=bool(data.get("debug", False)),
            location=Location.from_dict(data.get("location")),
        )

    @property
    def effective_ttl(self) -> int:
        """The TTL to announce, falling back to the default when unset."""
        return self.ttl or DEFAULT_TTL


_registries: dict[str, Registry] = {}
_lock = threading.RLock()


def register(name: str, registry: Registry) -> None:
    """Store ``registry`` under ``name``; each service has its own registry."""
    with _lock:
        _registries[name] = registry


def get(name: str) -> Registry | None:
    """Return the registry stored under ``name``, if any."""
    with _lock:
        return _registries.get(name)


def _split_host_port(address: str) -> tuple[str, str]:
    colon = address.rfind(":")
    if colon < 0:
        raise ValueError(f"address {address}: missing port in address")
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"address {address}: missing ']' in address")
        if end + 1 == len(address):
            raise ValueError(f"address {address}: missing port in address")
        if end + 1 != colon:
            if address[end + 1] == ":":
                raise ValueError(f"address {address}: too many colons in address")
            raise ValueError(f"address {address}: missing port in address")
        host = address[1:end]
        if "[" in host or "]" in host:
            raise ValueError(f"address {address}: unexpected bracket in address")
    else:
        host = address[:colon]
        if ":" in host:
            raise ValueError(f"address {address}: too many colons in address")
        if "[" in host or "]" in host:
            raise ValueError(f"address {address}: unexpected bracket in address")
    port = address[colon + 1 :]
    if "[" in port or "]" in port:
        raise ValueError(f"address {address}: unexpected bracket in address")
    return host, port


def _join_host_port(host: str, port: str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _is_ip(host: str) -> bool:
    if not host or "%" in host:
        return False
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def parse_host_port(address: str) -> str:
    """Resolve a ``nic:port`` address to ``ip:port``; other addresses pass unchanged."""
    try:
        host, port = _split_host_port(address)
    except ValueError:
        return address
    if _is_ip(host):
        return address
    return _join_host_port(ip_by_nic(host), port)


@lru_cache(maxsize=1)
def _local_ips() -> dict[str, tuple[tuple[str, ...], tuple[str, ...]]]:
    """Map each network interface to its IPv4 and IPv6 addresses, enumerated once."""
    try:
        interfaces = psutil.net_if_addrs()
    except OSError:
        return {}
    table: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {}
    for nic, addrs in interfaces.items():
        ipv4: list[str] = []
        ipv6: list[str] = []
        for addr in addrs:
            if addr.family == socket.AF_INET:
                ipv4.append(addr.address)
            elif addr.family == socket.AF_INET6:
                ipv6.append(addr.address.split("%", 1)[0])
        if ipv4 or ipv6:
            table[nic] = (tuple(ipv4), tuple(ipv6))
    return table


def ip_by_nic(nic: str) -> str:
    """Return the first IPv4 (else IPv6) address of interface ``nic``, or ``""``."""
    entry = _local_ips().get(nic)
    if entry is None:
        return ""
    ipv4, ipv6 = entry
    if ipv4:
        return ipv4[0]
    if ipv6:
        return ipv6[0]
    return ""