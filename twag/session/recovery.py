"""Recovery tombstones for sessions that must be re-established."""

from __future__ import annotations

import ipaddress
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from twag.session.models import (
    IPAddress,
    RecoveryState,
    RecoveryTombstone,
    Session,
    parse_mac,
)

Duration = Union[timedelta, int, float]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_timedelta(value: Duration) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


def _ip_key(ip: Union[str, IPAddress, None]) -> Optional[str]:
    if ip is None or ip == "":
        return None
    return str(ipaddress.ip_address(ip))


class RecoveryStore:
    """Thread-safe store of RecoveryTombstone records; lookups return copies.

    Tombstones are indexed by MAC, IMSI, old subscriber IP and old remote
    GTP-U TEID. Expired tombstones are dropped when a lookup touches them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_mac: dict[str, RecoveryTombstone] = {}
        self._by_imsi: dict[str, RecoveryTombstone] = {}
        self._by_ip: dict[str, RecoveryTombstone] = {}
        self._by_remote_teid: dict[int, RecoveryTombstone] = {}

    def add(
        self, session: Optional[Session], reason: str, ttl: Duration
    ) -> Optional[RecoveryTombstone]:
        """Record a tombstone for a session; None when there is no session or ttl <= 0."""
        if session is None:
            return None
        ttl = _as_timedelta(ttl)
        if ttl <= timedelta(0):
            return None
        now = _utcnow()
        tombstone = RecoveryTombstone(
            imsi=session.imsi,
            apn=session.apn,
            old_subscriber_ip=session.subscriber_ip,
            old_session_id=session.id,
            old_remote_teid=session.remote_gtpu_teid,
            old_local_teid=session.local_gtpu_teid,
            original_username=session.username,
            eap_identity=session.eap_identity,
            radius_state=session.radius_state,
            nas_ip=session.nas_ip,
            nas_identifier=session.nas_identifier,
            acct_session_id=session.acct_session_id,
            calling_station_id=session.calling_station_id,
            called_station_id=session.called_station_id,
            radius_class=bytes(session.radius_class),
            connect_info=session.connect_info,
            framed_mtu=session.framed_mtu,
            reason=reason,
            state=RecoveryState.REQUIRED,
            created_at=now,
            expires_at=now + ttl,
        )
        if session.mac_address:
            try:
                mac = parse_mac(session.mac_address)
            except ValueError:
                mac = ""
            if mac:
                tombstone.mac = mac
                if not tombstone.calling_station_id:
                    tombstone.calling_station_id = mac
        with self._lock:
            self._index(tombstone)
            return replace(tombstone)

    def update(
        self, old_session_id: str, fn: Callable[[RecoveryTombstone], None]
    ) -> Optional[RecoveryTombstone]:
        """Apply fn to the live tombstone of a former session and reindex it."""
        if not old_session_id:
            return None
        with self._lock:
            tombstone = next(
                (t for t in self._by_mac.values() if t.old_session_id == old_session_id),
                None,
            )
            if tombstone is None:
                tombstone = next(
                    (
                        t
                        for t in self._by_imsi.values()
                        if t.old_session_id == old_session_id
                    ),
                    None,
                )
            if tombstone is None or self._expired(tombstone):
                return None
            self._unindex(tombstone)
            try:
                fn(tombstone)
            finally:
                self._index(tombstone)
            return replace(tombstone)

    def lookup_by_mac(self, mac: str) -> Optional[RecoveryTombstone]:
        """Find a live tombstone by hardware address."""
        if not mac:
            return None
        try:
            key = parse_mac(mac)
        except ValueError:
            return None
        with self._lock:
            return self._live_copy(self._by_mac.get(key))

    def lookup_by_ip(
        self, ip: Union[str, IPAddress, None]
    ) -> Optional[RecoveryTombstone]:
        """Find a live tombstone by the old subscriber IP."""
        key = _ip_key(ip)
        if key is None:
            return None
        with self._lock:
            return self._live_copy(self._by_ip.get(key))

    def find(self, imsi: str, mac: str) -> Optional[RecoveryTombstone]:
        """Find a live tombstone by MAC first, then by IMSI."""
        with self._lock:
            tombstone = None
            if mac:
                try:
                    key = parse_mac(mac)
                except ValueError:
                    key = mac
                tombstone = self._by_mac.get(key)
            if tombstone is None and imsi:
                tombstone = self._by_imsi.get(imsi)
            return self._live_copy(tombstone)

    def complete_for(self, session: Optional[Session]) -> Optional[RecoveryTombstone]:
        """Remove and return the live tombstone matching a new session."""
        if session is None:
            return None
        with self._lock:
            tombstone = None
            if session.mac_address:
                try:
                    tombstone = self._by_mac.get(parse_mac(session.mac_address))
                except ValueError:
                    tombstone = None
            if tombstone is None and session.imsi:
                tombstone = self._by_imsi.get(session.imsi)
            if tombstone is None or self._expired(tombstone):
                return None
            self._unindex(tombstone)
            return replace(tombstone)

    def _live_copy(
        self, tombstone: Optional[RecoveryTombstone]
    ) -> Optional[RecoveryTombstone]:
        if tombstone is None or self._expired(tombstone):
            return None
        return replace(tombstone)

    def _expired(self, tombstone: RecoveryTombstone) -> bool:
        if tombstone.expires_at is not None and _utcnow() > tombstone.expires_at:
            self._unindex(tombstone)
            return True
        return False

    def _index(self, tombstone: RecoveryTombstone) -> None:
        if tombstone.mac:
            self._by_mac[tombstone.mac] = tombstone
        if tombstone.imsi:
            self._by_imsi[tombstone.imsi] = tombstone
        if tombstone.old_subscriber_ip is not None:
            self._by_ip[str(tombstone.old_subscriber_ip)] = tombstone
        if tombstone.old_remote_teid:
            self._by_remote_teid[tombstone.old_remote_teid] = tombstone

    def _unindex(self, tombstone: RecoveryTombstone) -> None:
        if tombstone.mac:
            self._by_mac.pop(tombstone.mac, None)
        if tombstone.imsi:
            self._by_imsi.pop(tombstone.imsi, None)
        if tombstone.old_subscriber_ip is not None:
            self._by_ip.pop(str(tombstone.old_subscriber_ip), None)
        if tombstone.old_remote_teid:
            self._by_remote_teid.pop(tombstone.old_remote_teid, None)