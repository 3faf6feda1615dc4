"""Registry of access points / NAS devices seen sending RADIUS."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from twag.session.models import parse_mac


@dataclass
class APObservation:
    source_ip: str = ""
    nas_ip: str = ""
    nas_identifier: str = ""
    called_station_id: str = ""
    accounting_packet: bool = False


@dataclass
class APRecord:
    source_ip: str = ""
    nas_ip: str = ""
    nas_identifier: str = ""
    called_station_id: str = ""
    bssid: str = ""
    ssid: str = ""
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    auth_request_count: int = 0
    accounting_request_count: int = 0


def coalesce(*args: str) -> str:
    """First non-empty string, or ""."""
    return next((v for v in args if v), "")


def parse_called_station_id(value: str) -> tuple[str, str]:
    """Split a Called-Station-Id of the form ``<bssid>:<ssid>`` into (bssid, ssid)."""
    value = value.strip()
    if not value:
        return "", ""
    for sep in (":", " "):
        head, found, tail = value.partition(sep)
        if not found:
            continue
        try:
            parse_mac(head)
        except ValueError:
            continue
        return head.lower(), tail.strip()
    return "", ""


class APRegistry:
    """Thread-safe record of each AP keyed by its first known identifier."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._log = logger
        self._lock = threading.Lock()
        self._records: dict[str, APRecord] = {}

    def update(self, observation: APObservation) -> APRecord:
        now = datetime.now(timezone.utc)
        obs = observation
        key = coalesce(
            obs.source_ip, obs.nas_ip, obs.nas_identifier, obs.called_station_id
        ) or "unknown"
        bssid, ssid = parse_called_station_id(obs.called_station_id)
        with self._lock:
            rec = self._records.get(key)
            if rec is None:
                rec = APRecord(source_ip=obs.source_ip, first_seen=now)
                self._records[key] = rec
            rec.last_seen = now
            rec.source_ip = coalesce(obs.source_ip, rec.source_ip)
            rec.nas_ip = coalesce(obs.nas_ip, rec.nas_ip)
            rec.nas_identifier = coalesce(obs.nas_identifier, rec.nas_identifier)
            rec.called_station_id = coalesce(obs.called_station_id, rec.called_station_id)
            rec.bssid = coalesce(bssid, rec.bssid)
            rec.ssid = coalesce(ssid, rec.ssid)
            if obs.accounting_packet:
                rec.accounting_request_count += 1
            else:
                rec.auth_request_count += 1
            result = replace(rec)
        if self._log is not None:
            self._log.info(
                "AP/NAS registry updated source_ip=%s nas_ip=%s nas_identifier=%s "
                "called_station_id=%s ssid=%s",
                result.source_ip,
                result.nas_ip,
                result.nas_identifier,
                result.called_station_id,
                result.ssid,
            )
        return result