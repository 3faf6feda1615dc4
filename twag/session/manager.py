"""Session manager: lifecycle, indexes, auth cache and recovery tombstones."""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from twag.session.authcache import AuthCache
from twag.session.models import (
    AuthCacheEntry,
    AuthCacheUpdate,
    IPAddress,
    RecoveryTombstone,
    Session,
    State,
    mac_matches,
    parse_mac,
    same_apn,
    valid_transition,
)
from twag.session.recovery import Duration, RecoveryStore

IPLike = Union[str, IPAddress, None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_ip(value: IPLike) -> Optional[IPAddress]:
    if value is None or value == "":
        return None
    return ipaddress.ip_address(value)


@dataclass
class CreateInput:
    """Attributes of a new pending session."""

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
    radius_state: str = ""
    radius_class: bytes = b""
    connect_info: str = ""
    framed_mtu: int = 0
    access_type: str = ""
    access_interface: str = ""
    gateway_ip: IPLike = None
    ttl: Optional[timedelta] = None


@dataclass
class AccountingUpdate:
    """Accounting data to merge into a session; zero values are ignored."""

    acct_session_id: str = ""
    acct_multi_session_id: str = ""
    active: bool = False
    at_risk: bool = False
    last_seen: Optional[datetime] = None
    input_octets: int = 0
    output_octets: int = 0
    input_packets: int = 0
    output_packets: int = 0
    terminate_cause: str = ""


class SessionNotFoundError(LookupError):
    """No session has the given ID."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f'session "{session_id}" not found')
        self.session_id = session_id


class InvalidTransitionError(ValueError):
    """A session cannot move from its current state to the requested one."""

    def __init__(self, from_state: State, to_state: State) -> None:
        super().__init__(
            f"invalid session state transition: {from_state} -> {to_state}"
        )
        self.from_state = from_state
        self.to_state = to_state


def _subscriber_matches(session: Session, imsi: str, mac: str, apn: str) -> bool:
    if imsi and session.imsi and session.imsi != imsi:
        return False
    if mac and session.mac_address and not mac_matches(session.mac_address, mac):
        return False
    if apn and session.apn and not same_apn(session.apn, apn):
        return False
    if imsi and session.imsi == imsi:
        return True
    return bool(mac) and mac_matches(session.mac_address, mac)


class Manager:
    """Tracks sessions by ID, IMSI, MAC, IP and GTP-C TEID.

    All returned sessions are copies; changes go through the methods.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._next = 0
        self._by_id: dict[str, Session] = {}
        self._by_imsi: dict[str, Session] = {}
        self._by_mac: dict[str, Session] = {}
        self._by_ip: dict[str, Session] = {}
        self._by_teid: dict[int, Session] = {}
        self._auth_cache = AuthCache()
        self._recovery = RecoveryStore()

    # ----- lifecycle -------------------------------------------------------

    def create(self, input: CreateInput) -> Session:
        """Create a pending session and index it."""
        with self._lock:
            self._next += 1
            now = _utcnow()
            session = Session(
                id=f"twag-{time.time_ns()}-{self._next}",
                imsi=input.imsi,
                msisdn=input.msisdn,
                mac_address=input.mac_address,
                apn=input.apn,
                realm=input.realm,
                username=input.username,
                eap_identity=input.eap_identity,
                calling_station_id=input.calling_station_id,
                called_station_id=input.called_station_id,
                nas_ip=input.nas_ip,
                nas_identifier=input.nas_identifier,
                acct_session_id=input.acct_session_id,
                radius_state=input.radius_state,
                radius_class=bytes(input.radius_class),
                connect_info=input.connect_info,
                framed_mtu=input.framed_mtu,
                access_type=input.access_type,
                access_interface=input.access_interface,
                gateway_ip=_to_ip(input.gateway_ip),
                state=State.PENDING,
                created_at=now,
                updated_at=now,
            )
            if input.ttl is not None and input.ttl > timedelta(0):
                session.expires_at = now + input.ttl
            self._index(session)
            result = replace(session)
        self._log.info(
            "session created pending session_id=%s imsi=%s msisdn=%s mac=%s apn=%s state=%s",
            result.id,
            result.imsi,
            result.msisdn,
            result.mac_address,
            result.apn,
            result.state,
        )
        return result

    def mark_auth_pending(self, session_id: str) -> Session:
        return self._mutate(session_id, lambda s: None, State.AUTH_PENDING)

    def mark_authorized(self, session_id: str) -> Session:
        def authorize(s: Session) -> None:
            s.authenticated = True
            s.authorized = True

        return self._mutate(session_id, authorize, State.AUTHORIZED)

    def apply_auth_result(
        self, session_id: str, imsi: str, msisdn: str, apn: str, reason: str
    ) -> Session:
        """Authorize a session, filling in subscriber data and reindexing it."""

        def apply(s: Session) -> None:
            self._unindex(s)
            if imsi:
                s.imsi = imsi
            if msisdn:
                s.msisdn = msisdn
            if apn:
                s.apn = apn
            s.reason = reason
            s.authenticated = True
            s.authorized = True
            self._index(s)

        return self._mutate(session_id, apply, State.AUTHORIZED)

    def set_subscriber_ip(self, session_id: str, ip: IPLike) -> Session:
        """Assign the subscriber IP and move to ip_allocated."""
        return self._mutate(session_id, self._ip_assigner(ip), State.IP_ALLOCATED)

    def update_subscriber_ip(self, session_id: str, ip: IPLike) -> Session:
        """Replace the subscriber IP without changing state."""
        return self._mutate(session_id, self._ip_assigner(ip))

    def mark_pgw_pending(self, session_id: str) -> Session:
        return self._mutate(session_id, lambda s: None, State.PGW_PENDING)

    def mark_active(self, session_id: str) -> Session:
        return self._mutate(session_id, lambda s: None, State.ACTIVE)

    def mark_recovering(self, session_id: str, reason: str) -> Session:
        def set_reason(s: Session) -> None:
            s.reason = reason

        return self._mutate(session_id, set_reason, State.RECOVERING)

    def mark_terminating(self, session_id: str) -> Session:
        return self._mutate(session_id, lambda s: None, State.TERMINATING)

    def mark_failed(self, session_id: str, reason: str) -> Session:
        def set_reason(s: Session) -> None:
            s.reason = reason

        return self._mutate(session_id, set_reason, State.FAILED)

    def bind_teids(
        self, session_id: str, gtpc: int, local_gtpu: int, remote_gtpu: int
    ) -> Session:
        """Set the session's TEIDs, reindexing by GTP-C TEID."""

        def bind(s: Session) -> None:
            self._set_teids(s, gtpc, local_gtpu, remote_gtpu)

        return self._mutate(session_id, bind)

    def apply_pgw_result(
        self,
        session_id: str,
        pgw_control_ip: IPLike,
        pgw_user_ip: IPLike,
        gtpc: int,
        local_gtpu: int,
        remote_gtpu: int,
    ) -> Session:
        """Record the PGW addresses and TEIDs from a create-session answer."""

        def apply(s: Session) -> None:
            s.pgw_control_ip = _to_ip(pgw_control_ip)
            s.pgw_user_ip = _to_ip(pgw_user_ip)
            self._set_teids(s, gtpc, local_gtpu, remote_gtpu)

        return self._mutate(session_id, apply)

    def delete(self, session_id: str) -> Optional[Session]:
        """Terminate a terminating session and drop it; None if not allowed."""
        with self._lock:
            session = self._by_id.get(session_id)
            if session is None or not valid_transition(session.state, State.TERMINATED):
                return None
            self._unindex(session)
            session.state = State.TERMINATED
            session.updated_at = _utcnow()
            return replace(session)

    def expire_inactive(self, now: datetime) -> list[Session]:
        """Drop every session whose expiry is at or before now."""
        with self._lock:
            expired = []
            for session in list(self._by_id.values()):
                if session.expires_at is None or now < session.expires_at:
                    continue
                self._unindex(session)
                session.state = State.TERMINATED
                session.updated_at = now
                expired.append(replace(session))
            return expired

    def record_gtpu_error(self, session_id: str, teid: int, at: datetime) -> Session:
        """Count a GTP-U Error Indication against a session."""

        def record(s: Session) -> None:
            s.gtpu_error_count += 1
            s.last_gtpu_error_at = at
            s.last_gtpu_error_teid = teid
            s.reason = f"GTP-U Error Indication for TEID 0x{teid:08x}"

        return self._mutate(session_id, record)

    def apply_accounting(self, session_id: str, update: AccountingUpdate) -> Session:
        """Merge RADIUS accounting data into a session."""

        def apply(s: Session) -> None:
            if update.acct_session_id:
                s.acct_session_id = update.acct_session_id
            if update.acct_multi_session_id:
                s.acct_multi_session_id = update.acct_multi_session_id
            s.accounting_active = update.active
            s.accounting_at_risk = update.at_risk
            if update.last_seen is not None:
                s.last_accounting_at = update.last_seen
            if update.input_octets:
                s.acct_input_octets = update.input_octets
            if update.output_octets:
                s.acct_output_octets = update.output_octets
            if update.input_packets:
                s.acct_input_packets = update.input_packets
            if update.output_packets:
                s.acct_output_packets = update.output_packets
            if update.terminate_cause:
                s.acct_terminate_cause = update.terminate_cause

        return self._mutate(session_id, apply)

    # ----- lookups ---------------------------------------------------------

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._copy(self._by_id.get(session_id))

    def list(self) -> list[Session]:
        with self._lock:
            return [replace(s) for s in self._by_id.values()]

    def lookup_by_imsi(self, imsi: str) -> Optional[Session]:
        with self._lock:
            return self._copy(self._by_imsi.get(imsi))

    def lookup_by_mac(self, mac: str) -> Optional[Session]:
        """Find by MAC as given, then by its canonical form."""
        with self._lock:
            session = self._by_mac.get(mac)
            if session is None:
                try:
                    session = self._by_mac.get(parse_mac(mac))
                except ValueError:
                    session = None
            return self._copy(session)

    def find_active_by_subscriber(
        self, imsi: str, mac: str, apn: str
    ) -> Optional[Session]:
        return self._find_by_subscriber(imsi, mac, apn, active_only=True)

    def find_any_by_subscriber(
        self, imsi: str, mac: str, apn: str
    ) -> Optional[Session]:
        return self._find_by_subscriber(imsi, mac, apn, active_only=False)

    def find_by_mac(self, mac: str) -> list[Session]:
        with self._lock:
            return [
                replace(s) for s in self._by_id.values() if mac_matches(s.mac_address, mac)
            ]

    def find_by_imsi_apn(self, imsi: str, apn: str) -> list[Session]:
        with self._lock:
            return [
                replace(s)
                for s in self._by_id.values()
                if s.imsi == imsi and same_apn(s.apn, apn)
            ]

    def lookup_by_ip(self, ip: IPLike) -> Optional[Session]:
        address = _to_ip(ip)
        if address is None:
            return None
        with self._lock:
            return self._copy(self._by_ip.get(str(address)))

    def lookup_by_acct_session(
        self, acct_session_id: str, nas_ip: str, nas_identifier: str
    ) -> Optional[Session]:
        """Find by accounting session ID, ignoring NAS fields that are blank on either side."""
        if not acct_session_id:
            return None
        with self._lock:
            for s in self._by_id.values():
                if s.acct_session_id != acct_session_id:
                    continue
                if nas_ip and s.nas_ip and s.nas_ip != nas_ip:
                    continue
                if nas_identifier and s.nas_identifier and s.nas_identifier != nas_identifier:
                    continue
                return replace(s)
            return None

    def lookup_by_class(self, radius_class: bytes) -> Optional[Session]:
        """Find the session whose ID is carried in a RADIUS Class attribute."""
        if not radius_class:
            return None
        return self.get(radius_class.decode("utf-8", errors="replace"))

    def lookup_by_teid(self, teid: int) -> Optional[Session]:
        with self._lock:
            return self._copy(self._by_teid.get(teid))

    def lookup_by_remote_gtpu_teid(self, teid: int) -> Optional[Session]:
        with self._lock:
            return self._copy(
                next((s for s in self._by_id.values() if s.remote_gtpu_teid == teid), None)
            )

    def lookup_by_local_gtpu_teid(self, teid: int) -> Optional[Session]:
        with self._lock:
            return self._copy(
                next((s for s in self._by_id.values() if s.local_gtpu_teid == teid), None)
            )

    # ----- auth cache ------------------------------------------------------

    def upsert_auth_cache(self, update: AuthCacheUpdate) -> Optional[AuthCacheEntry]:
        return self._auth_cache.upsert(update)

    def lookup_valid_auth_cache(
        self, mac: str, imsi: str, apn: str, now: Optional[datetime] = None
    ) -> Optional[AuthCacheEntry]:
        return self._auth_cache.lookup_valid(mac, imsi, apn, now)

    def lookup_valid_auth_cache_by_acct(
        self,
        acct_session_id: str,
        nas_ip: str,
        nas_identifier: str,
        now: Optional[datetime] = None,
    ) -> Optional[AuthCacheEntry]:
        return self._auth_cache.lookup_valid_by_acct(
            acct_session_id, nas_ip, nas_identifier, now
        )

    def delete_auth_cache(self, mac: str, imsi: str, apn: str) -> bool:
        return self._auth_cache.delete(mac, imsi, apn)

    # ----- recovery --------------------------------------------------------

    def add_recovery_tombstone(
        self, session: Optional[Session], reason: str, ttl: Duration
    ) -> Optional[RecoveryTombstone]:
        return self._recovery.add(session, reason, ttl)

    def update_recovery(
        self, old_session_id: str, fn: Callable[[RecoveryTombstone], None]
    ) -> Optional[RecoveryTombstone]:
        return self._recovery.update(old_session_id, fn)

    def lookup_recovery_by_mac(self, mac: str) -> Optional[RecoveryTombstone]:
        return self._recovery.lookup_by_mac(mac)

    def lookup_recovery_by_ip(self, ip: IPLike) -> Optional[RecoveryTombstone]:
        return self._recovery.lookup_by_ip(ip)

    def find_recovery(self, imsi: str, mac: str) -> Optional[RecoveryTombstone]:
        return self._recovery.find(imsi, mac)

    def complete_recovery_for(
        self, session: Optional[Session]
    ) -> Optional[RecoveryTombstone]:
        return self._recovery.complete_for(session)

    # ----- internals -------------------------------------------------------

    def _mutate(
        self,
        session_id: str,
        fn: Callable[[Session], None],
        next_state: Optional[State] = None,
    ) -> Session:
        with self._lock:
            session = self._by_id.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if next_state is not None and not valid_transition(session.state, next_state):
                raise InvalidTransitionError(session.state, next_state)
            fn(session)
            if next_state is not None:
                session.state = next_state
            session.updated_at = _utcnow()
            return replace(session)

    def _ip_assigner(self, ip: IPLike) -> Callable[[Session], None]:
        address = _to_ip(ip)

        def assign(s: Session) -> None:
            if s.subscriber_ip is not None:
                self._by_ip.pop(str(s.subscriber_ip), None)
            s.subscriber_ip = address
            if address is not None:
                self._by_ip[str(address)] = s

        return assign

    def _set_teids(self, s: Session, gtpc: int, local_gtpu: int, remote_gtpu: int) -> None:
        if s.gtpc_teid:
            self._by_teid.pop(s.gtpc_teid, None)
        s.gtpc_teid = gtpc
        s.local_gtpu_teid = local_gtpu
        s.remote_gtpu_teid = remote_gtpu
        if s.gtpc_teid:
            self._by_teid[s.gtpc_teid] = s

    def _find_by_subscriber(
        self, imsi: str, mac: str, apn: str, active_only: bool
    ) -> Optional[Session]:
        with self._lock:
            for s in self._by_id.values():
                if active_only and s.state != State.ACTIVE:
                    continue
                if _subscriber_matches(s, imsi, mac, apn):
                    return replace(s)
            return None

    @staticmethod
    def _copy(session: Optional[Session]) -> Optional[Session]:
        return None if session is None else replace(session)

    def _index(self, s: Session) -> None:
        self._by_id[s.id] = s
        if s.imsi:
            self._by_imsi[s.imsi] = s
        if s.mac_address:
            self._by_mac[s.mac_address] = s
        if s.subscriber_ip is not None:
            self._by_ip[str(s.subscriber_ip)] = s
        if s.gtpc_teid:
            self._by_teid[s.gtpc_teid] = s

    def _unindex(self, s: Session) -> None:
        self._by_id.pop(s.id, None)
        self._by_imsi.pop(s.imsi, None)
        self._by_mac.pop(s.mac_address, None)
        if s.subscriber_ip is not None:
            self._by_ip.pop(str(s.subscriber_ip), None)
        if s.gtpc_teid:
            self._by_teid.pop(s.gtpc_teid, None)