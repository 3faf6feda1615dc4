"""Session, auth-cache and recovery records with their shared helpers."""

from __future__ import annotations

import enum
import ipaddress
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_MAC_OCTET_COUNTS = (6, 8, 20)


class State(str, enum.Enum):
    """Lifecycle state of a subscriber session."""

    PENDING = "pending"
    AUTH_PENDING = "auth_pending"
    AUTHORIZED = "authorized"
    IP_ALLOCATED = "ip_allocated"
    PGW_PENDING = "pgw_pending"
    ACTIVE = "active"
    RECOVERING = "recovering"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class RecoveryState(str, enum.Enum):
    """Progress of a session recovery tombstone."""

    NONE = "none"
    REQUIRED = "recovery_required"
    DISCONNECTING = "disconnecting"
    WAITING_ACCOUNTING_STOP = "waiting_accounting_stop"
    WAITING_REAUTH = "waiting_reauth"
    FALLBACK = "fallback_tombstone"
    COMPLETED = "completed"
    EXPIRED = "expired"

    def __str__(self) -> str:
        return self.value


@dataclass
class Session:
    """A subscriber session as tracked by the gateway."""

    id: str = ""
    imsi: str = ""
    msisdn: str = ""
    mac_address: str = ""
    apn: str = ""
    realm: str = ""
    username: str = ""
    eap_identity: str = ""
    calling_station_id: str = ""
    called_station_id: str = ""
    nas_ip: str = ""
    nas_identifier: str = ""
    acct_session_id: str = ""
    acct_multi_session_id: str = ""
    accounting_active: bool = False
    accounting_at_risk: bool = False
    last_accounting_at: Optional[datetime] = None
    acct_input_octets: int = 0
    acct_output_octets: int = 0
    acct_input_packets: int = 0
    acct_output_packets: int = 0
    acct_terminate_cause: str = ""
    radius_state: str = ""
    radius_class: bytes = b""
    connect_info: str = ""
    framed_mtu: int = 0
    subscriber_ip: Optional[IPAddress] = None
    gateway_ip: Optional[IPAddress] = None
    access_type: str = ""
    access_interface: str = ""
    pgw_control_ip: Optional[IPAddress] = None
    pgw_user_ip: Optional[IPAddress] = None
    gtpc_teid: int = 0
    local_gtpu_teid: int = 0
    remote_gtpu_teid: int = 0
    gtpu_error_count: int = 0
    last_gtpu_error_at: Optional[datetime] = None
    last_gtpu_error_teid: int = 0
    authenticated: bool = False
    authorized: bool = False
    state: State = State.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    reason: str = ""


@dataclass
class AuthCacheEntry:
    """A cached successful authentication for a MAC/IMSI/APN triple."""

    mac_address: str = ""
    imsi: str = ""
    user_name: str = ""
    apn: str = ""
    msisdn: str = ""
    nas_ip: str = ""
    nas_identifier: str = ""
    called_station_id: str = ""
    calling_station_id: str = ""
    ssid: str = ""
    bssid: str = ""
    acct_session_id: str = ""
    session_timeout_seconds: int = 0
    auth_start_time: Optional[datetime] = None
    auth_expires_at: Optional[datetime] = None
    last_seen_time: Optional[datetime] = None
    last_access_accept_session_id: str = ""
    last_accounting_stop_at: Optional[datetime] = None
    last_accounting_stop_cause: str = ""


@dataclass
class AuthCacheUpdate:
    """Fields to merge into an auth-cache entry; empty values are ignored."""

    mac_address: str = ""
    imsi: str = ""
    user_name: str = ""
    apn: str = ""
    msisdn: str = ""
    nas_ip: str = ""
    nas_identifier: str = ""
    called_station_id: str = ""
    calling_station_id: str = ""
    ssid: str = ""
    bssid: str = ""
    acct_session_id: str = ""
    session_timeout_seconds: int = 0
    auth_start_time: Optional[datetime] = None
    auth_expires_at: Optional[datetime] = None
    last_seen_time: Optional[datetime] = None
    last_access_accept_session_id: str = ""
    last_accounting_stop_at: Optional[datetime] = None
    last_accounting_stop_cause: str = ""


@dataclass
class RecoveryTombstone:
    """What remains of a lost session while the subscriber is recovered."""

    mac: str = ""
    imsi: str = ""
    apn: str = ""
    old_subscriber_ip: Optional[IPAddress] = None
    old_session_id: str = ""
    old_remote_teid: int = 0
    old_local_teid: int = 0
    original_username: str = ""
    eap_identity: str = ""
    radius_state: str = ""
    nas_ip: str = ""
    nas_identifier: str = ""
    acct_session_id: str = ""
    calling_station_id: str = ""
    called_station_id: str = ""
    radius_class: bytes = b""
    connect_info: str = ""
    framed_mtu: int = 0
    reason: str = ""
    state: RecoveryState = RecoveryState.NONE
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_action: str = ""
    last_error: str = ""


def parse_mac(value: str) -> str:
    """Parse a hardware address and return it as lowercase colon-separated hex.

    Accepts ``aa:bb:...``, ``aa-bb-...`` and ``aabb.ccdd....`` forms of
    6, 8 or 20 octets. Raises ValueError for anything else.
    """
    if len(value) < 14:
        raise ValueError(f"invalid MAC address {value!r}")
    if value[2] in ":-":
        if (len(value) + 1) % 3:
            raise ValueError(f"invalid MAC address {value!r}")
        octets = value.split(value[2])
        if any(len(octet) != 2 for octet in octets):
            raise ValueError(f"invalid MAC address {value!r}")
    elif value[4] == ".":
        if (len(value) + 1) % 5:
            raise ValueError(f"invalid MAC address {value!r}")
        groups = value.split(".")
        if any(len(group) != 4 for group in groups):
            raise ValueError(f"invalid MAC address {value!r}")
        octets = [part for group in groups for part in (group[:2], group[2:])]
    else:
        raise ValueError(f"invalid MAC address {value!r}")
    if len(octets) not in _MAC_OCTET_COUNTS:
        raise ValueError(f"invalid MAC address {value!r}")
    if any(not set(octet) <= _HEX_DIGITS for octet in octets):
        raise ValueError(f"invalid MAC address {value!r}")
    return ":".join(octet.lower() for octet in octets)


def normalize_mac(mac: str) -> str:
    """Canonical form of a MAC, or the lowercased input when it does not parse."""
    try:
        return parse_mac(mac)
    except ValueError:
        return mac.lower()


def mac_matches(a: str, b: str) -> bool:
    """True when both MACs are present and equal after normalisation."""
    if not a or not b:
        return False
    return normalize_mac(a) == normalize_mac(b)


def same_apn(a: str, b: str) -> bool:
    """Compare APNs case-insensitively."""
    return a.casefold() == b.casefold()


_TRANSITIONS: dict[State, frozenset[State]] = {
    State.PENDING: frozenset({State.AUTH_PENDING, State.TERMINATING}),
    State.AUTH_PENDING: frozenset({State.AUTHORIZED, State.TERMINATING}),
    State.AUTHORIZED: frozenset(
        {State.IP_ALLOCATED, State.PGW_PENDING, State.TERMINATING}
    ),
    State.IP_ALLOCATED: frozenset({State.PGW_PENDING, State.TERMINATING}),
    State.PGW_PENDING: frozenset({State.ACTIVE, State.TERMINATING}),
    State.ACTIVE: frozenset({State.TERMINATING, State.RECOVERING}),
    State.RECOVERING: frozenset({State.TERMINATING, State.FAILED}),
    State.TERMINATING: frozenset({State.TERMINATED}),
}


def valid_transition(from_state: State, to_state: State) -> bool:
    """Whether a session may move from one state to another."""
    if from_state == to_state:
        return True
    if to_state == State.FAILED:
        return from_state != State.TERMINATED
    return to_state in _TRANSITIONS.get(from_state, frozenset())