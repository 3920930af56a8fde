import socket
from types import SimpleNamespace
from unittest import mock

import pytest

from hormmanage import registry


class _Recorder(registry.Registry):
    def __init__(self):
        self.calls = []

    def register(self, service, address):
        self.calls.append(("register", service, address))

    def deregister(self, service):
        self.calls.append(("deregister", service))


@pytest.fixture
def fake_nics():
    table = {
        "eth9": [
            SimpleNamespace(family=socket.AF_INET6, address="fe80::1%eth9"),
            SimpleNamespace(family=socket.AF_INET, address="192.0.2.10"),
        ],
        "v6only": [SimpleNamespace(family=socket.AF_INET6, address="2001:db8::5%v6only")],
    }
    registry._local_ips.cache_clear()
    with mock.patch("psutil.net_if_addrs", return_value=table):
        yield
    registry._local_ips.cache_clear()


def test_register_and_get():
    rec = _Recorder()
    registry.register("web.svc-a", rec)
    assert registry.get("web.svc-a") is rec


def test_register_overwrites():
    first, second = _Recorder(), _Recorder()
    registry.register("web.svc-b", first)
    registry.register("web.svc-b", second)
    assert registry.get("web.svc-b") is second


def test_get_missing_returns_none():
    assert registry.get("no-such-service-registered") is None


def test_registry_interface_dispatch():
    rec = _Recorder()
    registry.register("web.svc-c", rec)
    found = registry.get("web.svc-c")
    found.register("svc", "127.0.0.1:80")
    found.deregister("svc")
    assert rec.calls == [("register", "svc", "127.0.0.1:80"), ("deregister", "svc")]


def test_parse_host_port_ip_unchanged():
    assert registry.parse_host_port("127.0.0.1:8080") == "127.0.0.1:8080"
    assert registry.parse_host_port("[::1]:8080") == "[::1]:8080"


def test_parse_host_port_invalid_unchanged():
    assert registry.parse_host_port("no-port-here") == "no-port-here"
    assert registry.parse_host_port("1:2:3") == "1:2:3"


def test_parse_host_port_nic(fake_nics):
    assert registry.parse_host_port("eth9:8080") == "192.0.2.10:8080"


def test_parse_host_port_ipv6_nic(fake_nics):
    assert registry.parse_host_port("v6only:9000") == "[2001:db8::5]:9000"


def test_parse_host_port_unknown_nic(fake_nics):
    assert registry.parse_host_port("missing0:8080") == ":8080"


def test_ip_by_nic_prefers_ipv4(fake_nics):
    assert registry.ip_by_nic("eth9") == "192.0.2.10"


def test_ip_by_nic_strips_zone(fake_nics):
    assert registry.ip_by_nic("v6only") == "2001:db8::5"


def test_ip_by_nic_unknown(fake_nics):
    assert registry.ip_by_nic("missing0") == ""


def test_registry_config_from_dict():
    cfg = registry.RegistryConfig.from_dict(
        {
            "enable": True,
            "version": "1.0",
            "ttl": 7,
            "token": "token",
            "location": {"region": "r1", "zone": "z1", "compus": "c1"},
        }
    )
    assert cfg.enable is True
    assert cfg.version == "1.0"
    assert cfg.ttl == 7
    assert cfg.token == "token"
    assert cfg.location == registry.Location(region="r1", zone="z1", campus="c1")


def test_registry_config_defaults():
    cfg = registry.RegistryConfig.from_dict({})
    assert cfg.enable is False
    assert cfg.location is None
    assert cfg.effective_ttl == registry.DEFAULT_TTL


def test_registry_config_none():
    assert registry.RegistryConfig.from_dict(None) is None


def test_registry_config_bad_ttl():
    with pytest.raises(ValueError):
        registry.RegistryConfig.from_dict({"ttl": "soon"})