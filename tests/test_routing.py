import errno
import ipaddress
from dataclasses import dataclass, field
from typing import Optional

import pytest

from twag.routing import (
    SCOPE_LINK,
    LinkNotFoundError,
    Manager,
    Route,
    RoutingConfig,
    RoutingError,
    access_route,
)


@dataclass
class FakeSession:
    id: str = "twag-test"
    imsi: str = ""
    msisdn: str = ""
    mac_address: str = ""
    apn: str = ""
    state: str = ""
    reason: str = ""
    subscriber_ip: Optional[ipaddress.IPv4Address] = None
    gateway_ip: Optional[ipaddress.IPv4Address] = None
    access_interface: str = ""


@dataclass
class FakeNetlink:
    name: str = "eth1"
    index: int = 44
    del_error: Optional[Exception] = None
    replaced: list = field(default_factory=list)
    deleted: list = field(default_factory=list)

    def link_by_name(self, name):
        if name == self.name:
            return self.index
        raise LinkNotFoundError(name)

    def route_replace(self, route):
        self.replaced.append(route)

    def route_del(self, route):
        self.deleted.append(route)
        if self.del_error is not None:
            raise self.del_error


def _session(**overrides):
    values = dict(
        imsi="001010000000001",
        subscriber_ip=ipaddress.IPv4Address("10.200.0.2"),
        gateway_ip=ipaddress.IPv4Address("10.200.0.1"),
        access_interface="eth1",
    )
    values.update(overrides)
    return FakeSession(**values)


def test_install_and_remove_route_hooks():
    fake = FakeNetlink()
    m = Manager(RoutingConfig(install_routes=True), netlink=fake)
    m.start()
    sess = _session()
    m.install(sess)
    m.remove(sess)
    assert len(fake.replaced) == 1
    assert len(fake.deleted) == 1
    expected = Route(44, ipaddress.IPv4Network("10.200.0.2/32"), SCOPE_LINK)
    assert fake.replaced[0] == expected
    assert fake.deleted[0] == expected
    assert m.netlink is fake


def test_start_writes_forwarding_and_rp_filter_sysctls(tmp_path):
    paths = [
        "net/ipv4/ip_forward",
        "net/ipv4/conf/all/rp_filter",
        "net/ipv4/conf/default/rp_filter",
    ]
    for path in paths:
        full = tmp_path.joinpath(*path.split("/"))
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text("0\n")
    m = Manager(
        RoutingConfig(enable_ip_forwarding=True, disable_rp_filter=True),
        proc_sys=tmp_path,
    )
    m.start()
    assert (tmp_path / "net/ipv4/ip_forward").read_text() == "1\n"
    assert (tmp_path / "net/ipv4/conf/all/rp_filter").read_text() == "0\n"
    assert (tmp_path / "net/ipv4/conf/default/rp_filter").read_text() == "0\n"


def test_start_reports_unwritable_sysctl(tmp_path):
    m = Manager(RoutingConfig(enable_ip_forwarding=True), proc_sys=tmp_path / "missing")
    with pytest.raises(RoutingError, match="enable linux ip forwarding"):
        m.start()


def test_install_and_remove_validate_session():
    m = Manager(RoutingConfig(install_routes=True), netlink=FakeNetlink())
    with pytest.raises(RoutingError, match="session is required"):
        m.install(None)
    with pytest.raises(RoutingError, match="session is required"):
        m.remove(None)
    sess = FakeSession(id="twag-test")
    with pytest.raises(RoutingError, match="subscriber ip is required for routing install"):
        m.install(sess)
    with pytest.raises(RoutingError, match="subscriber ip is required for routing remove"):
        m.remove(sess)


def test_install_requires_access_interface():
    fake = FakeNetlink()
    m = Manager(RoutingConfig(install_routes=True), netlink=fake)
    with pytest.raises(RoutingError, match="access interface is required"):
        m.install(_session(access_interface=""))
    assert fake.replaced == []


def test_install_unknown_interface_fails():
    m = Manager(RoutingConfig(install_routes=True), netlink=FakeNetlink())
    with pytest.raises(RoutingError, match="lookup access interface 'eth9'"):
        m.install(_session(access_interface="eth9"))


def test_install_without_route_installation_leaves_netlink_untouched():
    fake = FakeNetlink()
    m = Manager(RoutingConfig(), netlink=fake)
    m.install(_session())
    m.remove(_session())
    assert fake.replaced == []
    assert fake.deleted == []


def test_remove_ignores_missing_route():
    fake = FakeNetlink(del_error=OSError(errno.ESRCH, "no such process"))
    m = Manager(RoutingConfig(install_routes=True), netlink=fake)
    m.remove(_session())
    assert len(fake.deleted) == 1


def test_remove_reports_other_errors():
    fake = FakeNetlink(del_error=OSError(errno.EPERM, "operation not permitted"))
    m = Manager(RoutingConfig(install_routes=True), netlink=fake)
    with pytest.raises(RoutingError, match="remove subscriber access route 10.200.0.2/32 dev eth1"):
        m.remove(_session())


def test_access_route_is_link_scoped_host_route():
    route = access_route(12, "100.64.0.10")
    assert route.link_index == 12
    assert str(route.dst) == "100.64.0.10/32"
    assert route.scope == SCOPE_LINK


def test_access_route_accepts_mapped_ipv6():
    route = access_route(3, "::ffff:100.64.0.11")
    assert str(route.dst) == "100.64.0.11/32"


def test_access_route_rejects_ipv6():
    with pytest.raises(ValueError):
        access_route(3, "2001:db8::1")