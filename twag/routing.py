"""Kernel forwarding settings and per-subscriber access routes."""

from __future__ import annotations

import errno
import ipaddress
import logging
import socket
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol, Union

SCOPE_UNIVERSE = 0
SCOPE_LINK = 253
RT_TABLE_MAIN = 254

_RTM_NEWROUTE = 24
_RTM_DELROUTE = 25
_NLMSG_ERROR = 2
_NLMSG_DONE = 3
_NLM_F_REQUEST = 0x1
_NLM_F_ACK = 0x4
_NLM_F_REPLACE = 0x100
_NLM_F_CREATE = 0x400
_RTPROT_BOOT = 3
_RTN_UNICAST = 1
_RTA_DST = 1
_RTA_OIF = 4
_RTA_TABLE = 15

_NOT_FOUND_ERRNOS = frozenset({errno.ENOENT, errno.ESRCH})

IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass
class RoutingConfig:
    """What the routing manager is allowed to change on the host."""

    enable_ip_forwarding: bool = False
    disable_rp_filter: bool = False
    install_routes: bool = False


class RoutingError(RuntimeError):
    """A forwarding setting or subscriber route could not be applied."""


class LinkNotFoundError(LookupError):
    """No network interface has the requested name."""


@dataclass(frozen=True)
class Route:
    """A host route to a subscriber through an access interface."""

    link_index: int
    dst: ipaddress.IPv4Network
    scope: int = SCOPE_LINK
    table: int = RT_TABLE_MAIN


class _RouteTable(Protocol):
    def link_by_name(self, name: str) -> int: ...

    def route_replace(self, route: Route) -> None: ...

    def route_del(self, route: Route) -> None: ...


def _attr(attr_type: int, data: bytes) -> bytes:
    length = 4 + len(data)
    padding = b"\x00" * (-length % 4)
    return struct.pack("=HH", length, attr_type) + data + padding


class NetlinkHandle:
    """Minimal rtnetlink client for replacing and deleting IPv4 routes."""

    def __init__(self) -> None:
        family = getattr(socket, "AF_NETLINK", None)
        if family is None:
            raise OSError(errno.EAFNOSUPPORT, "netlink sockets are not available")
        self._sock = socket.socket(family, socket.SOCK_RAW, socket.NETLINK_ROUTE)
        try:
            self._sock.bind((0, 0))
        except OSError:
            self._sock.close()
            raise
        self._seq = 0

    def __enter__(self) -> "NetlinkHandle":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._sock.close()

    def link_by_name(self, name: str) -> int:
        """Interface index of the named link."""
        try:
            return socket.if_nametoindex(name)
        except OSError as exc:
            raise LinkNotFoundError(f"link {name!r} not found") from exc

    def route_replace(self, route: Route) -> None:
        self._route_request(
            _RTM_NEWROUTE,
            _NLM_F_REQUEST | _NLM_F_ACK | _NLM_F_CREATE | _NLM_F_REPLACE,
            route,
            _RTPROT_BOOT,
        )

    def route_del(self, route: Route) -> None:
        self._route_request(_RTM_DELROUTE, _NLM_F_REQUEST | _NLM_F_ACK, route, 0)

    def _route_request(self, msg_type: int, flags: int, route: Route, protocol: int) -> None:
        table = route.table if route.table < 256 else 0
        rtmsg = struct.pack(
            "=BBBBBBBBI",
            socket.AF_INET,
            route.dst.prefixlen,
            0,
            0,
            table,
            protocol,
            route.scope,
            _RTN_UNICAST,
            0,
        )
        attrs = _attr(_RTA_DST, route.dst.network_address.packed)
        attrs += _attr(_RTA_OIF, struct.pack("=I", route.link_index))
        if route.table >= 256:
            attrs += _attr(_RTA_TABLE, struct.pack("=I", route.table))
        self._request(msg_type, flags, rtmsg + attrs)

    def _request(self, msg_type: int, flags: int, payload: bytes) -> None:
        self._seq += 1
        seq = self._seq
        header = struct.pack("=IHHII", 16 + len(payload), msg_type, flags, seq, 0)
        self._sock.send(header + payload)
        while True:
            data = self._sock.recv(65536)
            offset = 0
            while offset + 16 <= len(data):
                length, reply_type, _, reply_seq, _ = struct.unpack_from("=IHHII", data, offset)
                if length < 16:
                    raise OSError(errno.EPROTO, "malformed netlink reply")
                if reply_seq == seq:
                    if reply_type == _NLMSG_ERROR:
                        (code,) = struct.unpack_from("=i", data, offset + 16)
                        if code == 0:
                            return
                        raise OSError(-code, f"netlink: {errno.errorcode.get(-code, -code)}")
                    if reply_type == _NLMSG_DONE:
                        return
                offset += (length + 3) & ~3


def _is_not_found(exc: BaseException) -> bool:
    if isinstance(exc, (LinkNotFoundError, FileNotFoundError)):
        return True
    return isinstance(exc, OSError) and exc.errno in _NOT_FOUND_ERRNOS


def _ip_text(ip: Any) -> str:
    return "" if ip is None else str(ip)


def access_route(link_index: int, ip: IPLike) -> Route:
    """Link-scoped /32 route to the subscriber address on the given interface."""
    address = ipaddress.ip_address(ip)
    if isinstance(address, ipaddress.IPv6Address):
        mapped = address.ipv4_mapped
        if mapped is None:
            raise ValueError(f"{address} is not an IPv4 address")
        address = mapped
    return Route(
        link_index=link_index,
        dst=ipaddress.IPv4Network(f"{address}/32"),
        scope=SCOPE_LINK,
    )


class Manager:
    """Applies forwarding sysctls and installs subscriber access routes."""

    def __init__(
        self,
        config: RoutingConfig,
        logger: Optional[logging.Logger] = None,
        netlink: Optional[_RouteTable] = None,
        proc_sys: Union[str, Path] = "/proc/sys",
    ) -> None:
        self.config = config
        self._log = logger or logging.getLogger(__name__)
        self.netlink = netlink
        self.proc_sys = Path(proc_sys)

    def start(self) -> None:
        """Write the configured sysctls and open the netlink handle if needed."""
        cfg = self.config
        if cfg.enable_ip_forwarding:
            try:
                self._write_sysctl("net/ipv4/ip_forward", "1\n")
            except OSError as exc:
                raise RoutingError(f"enable linux ip forwarding: {exc}") from exc
            self._log.info("linux ip forwarding enabled")
        if cfg.disable_rp_filter:
            for path in ("net/ipv4/conf/all/rp_filter", "net/ipv4/conf/default/rp_filter"):
                try:
                    self._write_sysctl(path, "0\n")
                except OSError as exc:
                    raise RoutingError(f"disable rp_filter {path}: {exc}") from exc
            self._log.info("linux rp_filter disabled scope=all,default")
        if cfg.install_routes and self.netlink is None:
            self.netlink = self._open_netlink()

    def _write_sysctl(self, path: str, value: str) -> None:
        self.proc_sys.joinpath(*path.split("/")).write_text(value)

    @staticmethod
    def _open_netlink() -> NetlinkHandle:
        try:
            return NetlinkHandle()
        except OSError as exc:
            raise RoutingError(f"open routing netlink handle: {exc}") from exc

    @staticmethod
    def _check_session(session: Any, action: str) -> None:
        if session is None:
            raise RoutingError("session is required")
        if getattr(session, "subscriber_ip", None) is None:
            raise RoutingError(f"subscriber ip is required for routing {action}")

    def _lookup_route(self, session: Any) -> Route:
        interface = session.access_interface
        assert self.netlink is not None
        try:
            index = self.netlink.link_by_name(interface)
        except (LinkNotFoundError, OSError) as exc:
            raise RoutingError(f"lookup access interface {interface!r}: {exc}") from exc
        return access_route(index, session.subscriber_ip)

    def install(self, session: Any) -> None:
        """Install the subscriber's access route when route installation is on."""
        self._check_session(session, "install")
        if not self.config.install_routes:
            return
        interface = getattr(session, "access_interface", "")
        if not interface:
            raise RoutingError("access interface is required for subscriber route install")
        if self.netlink is None:
            self.netlink = self._open_netlink()
        route = self._lookup_route(session)
        try:
            self.netlink.route_replace(route)
        except OSError as exc:
            raise RoutingError(
                f"install subscriber access route {route.dst} dev {interface}: {exc}"
            ) from exc
        self._log.info(
            "subscriber access route installed session_id=%s imsi=%s msisdn=%s mac=%s "
            "apn=%s subscriber_ip=%s state=%s reason=%s gateway_ip=%s access_interface=%s",
            getattr(session, "id", ""),
            getattr(session, "imsi", ""),
            getattr(session, "msisdn", ""),
            getattr(session, "mac_address", ""),
            getattr(session, "apn", ""),
            session.subscriber_ip,
            getattr(session, "state", ""),
            getattr(session, "reason", ""),
            _ip_text(getattr(session, "gateway_ip", None)),
            interface,
        )

    def remove(self, session: Any) -> None:
        """Remove the subscriber's access route; a missing route is not an error."""
        self._check_session(session, "remove")
        if not self.config.install_routes:
            return
        interface = getattr(session, "access_interface", "")
        if not interface:
            raise RoutingError("access interface is required for subscriber route remove")
        if self.netlink is None:
            return
        route = self._lookup_route(session)
        try:
            self.netlink.route_del(route)
        except OSError as exc:
            if not _is_not_found(exc):
                raise RoutingError(
                    f"remove subscriber access route {route.dst} dev {interface}: {exc}"
                ) from exc
        self._log.info(
            "subscriber access route removed session_id=%s imsi=%s msisdn=%s mac=%s "
            "apn=%s subscriber_ip=%s state=%s reason=%s access_interface=%s",
            getattr(session, "id", ""),
            getattr(session, "imsi", ""),
            getattr(session, "msisdn", ""),
            getattr(session, "mac_address", ""),
            getattr(session, "apn", ""),
            session.subscriber_ip,
            getattr(session, "state", ""),
            getattr(session, "reason", ""),
            interface,
        )