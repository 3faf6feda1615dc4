"""Cache of recent successful authentications, indexed several ways."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from twag.session.models import (
    AuthCacheEntry,
    AuthCacheUpdate,
    normalize_mac,
    same_apn,
)

_TEXT_FIELDS = (
    "user_name",
    "msisdn",
    "nas_ip",
    "nas_identifier",
    "called_station_id",
    "calling_station_id",
    "ssid",
    "bssid",
    "acct_session_id",
    "last_access_accept_session_id",
    "last_accounting_stop_cause",
)


def auth_cache_key(mac: str, imsi: str, apn: str) -> str:
    """Primary key of an entry: normalised MAC, IMSI and lowercased APN."""
    return f"{normalize_mac(mac)}|{imsi.strip()}|{apn.strip().lower()}"


def auth_acct_key(acct_session_id: str, nas_ip: str, nas_identifier: str) -> str:
    """Key of an entry by accounting session and NAS."""
    return f"{acct_session_id.strip()}|{nas_ip.strip()}|{nas_identifier.strip()}"


def _acct_keys(acct_session_id: str, nas_ip: str, nas_identifier: str) -> list[str]:
    return [
        auth_acct_key(acct_session_id, nas_ip, nas_identifier),
        auth_acct_key(acct_session_id, nas_ip, ""),
        auth_acct_key(acct_session_id, "", nas_identifier),
        auth_acct_key(acct_session_id, "", ""),
    ]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthCache:
    """Thread-safe store of AuthCacheEntry records; lookups return copies."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_key: dict[str, AuthCacheEntry] = {}
        self._by_mac: dict[str, AuthCacheEntry] = {}
        self._by_imsi: dict[str, AuthCacheEntry] = {}
        self._by_acct: dict[str, AuthCacheEntry] = {}

    def upsert(self, update: AuthCacheUpdate) -> Optional[AuthCacheEntry]:
        """Create or merge an entry; returns None when MAC or IMSI is missing."""
        mac = normalize_mac(update.mac_address)
        imsi = update.imsi.strip()
        apn = update.apn.strip()
        if not mac or not imsi:
            return None
        key = auth_cache_key(mac, imsi, apn)
        now = _utcnow()
        with self._lock:
            entry = self._by_key.get(key)
            if entry is None:
                entry = AuthCacheEntry(
                    mac_address=mac, imsi=imsi, apn=apn, auth_start_time=now
                )
            else:
                self._unindex(entry)
            for name in _TEXT_FIELDS:
                value = getattr(update, name)
                if value:
                    setattr(entry, name, value)
            if update.session_timeout_seconds > 0:
                entry.session_timeout_seconds = update.session_timeout_seconds
            if update.auth_start_time is not None:
                entry.auth_start_time = update.auth_start_time
            if update.auth_expires_at is not None:
                entry.auth_expires_at = update.auth_expires_at
            entry.last_seen_time = update.last_seen_time or now
            if update.last_accounting_stop_at is not None:
                entry.last_accounting_stop_at = update.last_accounting_stop_at
            self._index(entry)
            return replace(entry)

    def lookup_valid(
        self, mac: str, imsi: str, apn: str, now: Optional[datetime] = None
    ) -> Optional[AuthCacheEntry]:
        """Find an unexpired entry by MAC/IMSI/APN, then MAC, then IMSI."""
        now = now or _utcnow()
        with self._lock:
            entry = None
            if mac and imsi:
                entry = self._by_key.get(auth_cache_key(mac, imsi, apn))
                if entry is None and apn:
                    entry = self._by_key.get(auth_cache_key(mac, imsi, ""))
            if entry is None and mac:
                entry = self._by_mac.get(normalize_mac(mac))
            if entry is None and imsi:
                entry = self._by_imsi.get(imsi.strip())
            if entry is None or self._expired(entry, now):
                return None
            if apn and entry.apn and not same_apn(entry.apn, apn):
                return None
            return replace(entry)

    def lookup_valid_by_acct(
        self,
        acct_session_id: str,
        nas_ip: str,
        nas_identifier: str,
        now: Optional[datetime] = None,
    ) -> Optional[AuthCacheEntry]:
        """Find an unexpired entry by accounting session, most specific NAS first."""
        if not acct_session_id:
            return None
        now = now or _utcnow()
        with self._lock:
            for key in _acct_keys(acct_session_id, nas_ip, nas_identifier):
                entry = self._by_acct.get(key)
                if entry is None or self._expired(entry, now):
                    continue
                return replace(entry)
            return None

    def delete(self, mac: str, imsi: str, apn: str) -> bool:
        """Remove the entry for the triple, or failing that for the MAC."""
        with self._lock:
            entry = self._by_key.get(auth_cache_key(mac, imsi, apn))
            if entry is None and mac:
                entry = self._by_mac.get(normalize_mac(mac))
            if entry is None:
                return False
            self._unindex(entry)
            return True

    def _expired(self, entry: AuthCacheEntry, now: datetime) -> bool:
        if entry.auth_expires_at is not None and now >= entry.auth_expires_at:
            self._unindex(entry)
            return True
        return False

    def _index(self, entry: AuthCacheEntry) -> None:
        self._by_key[auth_cache_key(entry.mac_address, entry.imsi, entry.apn)] = entry
        if entry.mac_address:
            self._by_mac[entry.mac_address] = entry
        if entry.imsi:
            self._by_imsi[entry.imsi] = entry
        if entry.acct_session_id:
            for key in _acct_keys(
                entry.acct_session_id, entry.nas_ip, entry.nas_identifier
            ):
                self._by_acct[key] = entry

    def _unindex(self, entry: AuthCacheEntry) -> None:
        self._by_key.pop(auth_cache_key(entry.mac_address, entry.imsi, entry.apn), None)
        self._by_mac.pop(entry.mac_address, None)
        self._by_imsi.pop(entry.imsi, None)
        if entry.acct_session_id:
            for key in _acct_keys(
                entry.acct_session_id, entry.nas_ip, entry.nas_identifier
            ):
                self._by_acct.pop(key, None)