# twag

Building blocks for a trusted WLAN access gateway: a subscriber session table
with its state machine, an authentication cache and recovery tombstones,
helpers that read EAP payloads and EAP-AKA / EAP-AKA' identities, a registry
of the access points heard from, and per-subscriber access routing on Linux.

The package has no runtime dependencies beyond the Python standard library
and needs Python 3.10 or later.

## What is in it

- `twag.session.manager` holds the session table. `Manager` creates sessions
  (`create` with a `CreateInput`), moves them through their states with
  `mark_auth_pending`, `mark_authorized`, `apply_auth_result`,
  `set_subscriber_ip`, `mark_pgw_pending`, `mark_active`, `mark_recovering`,
  `mark_terminating`, `mark_failed` and `delete`, and looks them up by ID,
  IMSI, MAC, IP, GTP-C TEID, local or remote GTP-U TEID, RADIUS Class or
  accounting session. A move the state machine does not allow raises
  `InvalidTransitionError`; an unknown session ID raises
  `SessionNotFoundError`. Sessions given a TTL are dropped by
  `expire_inactive`. Every session handed back is a copy.
- The same `Manager` fronts an authentication cache (`upsert_auth_cache`,
  `lookup_valid_auth_cache`, `lookup_valid_auth_cache_by_acct`,
  `delete_auth_cache`) and recovery tombstones for sessions that must be
  re-established (`add_recovery_tombstone`, `update_recovery`,
  `lookup_recovery_by_mac`, `lookup_recovery_by_ip`, `find_recovery`,
  `complete_recovery_for`). These stores are also usable on their own as
  `twag.session.authcache.AuthCache` and `twag.session.recovery.RecoveryStore`.
  Expired entries are dropped when a lookup reaches them.
- `twag.session.models` defines `Session`, `State`, `RecoveryState`,
  `AuthCacheEntry`, `AuthCacheUpdate`, `RecoveryTombstone`, and the helpers
  `parse_mac`, `normalize_mac`, `mac_matches`, `same_apn` and
  `valid_transition`.
- `twag.radius.eap` describes EAP payloads (`describe_eap`), reads the
  identity from an EAP-Response/Identity (`eap_identity`), pulls the IMSI out
  of a permanent NAI (`imsi_from_nai`, which strips the `0` and `6` prefixes
  of EAP-AKA and EAP-AKA' identities) and normalises Calling-Station-Id MAC
  forms (`normalize_mac`).
- `twag.radius.ap_registry` remembers each access point or NAS device heard
  from (`APRegistry.update` with an `APObservation`), counting
  authentication and accounting requests and splitting the BSSID and SSID
  out of the Called-Station-Id (`parse_called_station_id`).
- `twag.routing` can turn on IPv4 forwarding and turn off reverse-path
  filtering by writing under `/proc/sys`, and installs and removes link-scoped
  `/32` routes to subscribers on their access interface (`Manager`,
  `RoutingConfig`). It talks rtnetlink itself through `NetlinkHandle`, which
  needs Linux; any object with `link_by_name`, `route_replace` and
  `route_del` can be passed in its place. Failures raise `RoutingError`.

## What it does not do

There is no RADIUS server or client here: the package does not encode or
decode RADIUS packets, does not answer Access-Request or Accounting-Request
packets, does not compute MS-MPPE keys or Message-Authenticator attributes,
and does not send Disconnect or CoA requests. There is no command-line
program and no configuration-file loader, and sessions live in memory only.
The pieces above are meant to be wired into such a service.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Walking a session through its states:

```python
from twag.session.manager import CreateInput, InvalidTransitionError, Manager

sessions = Manager()
s = sessions.create(CreateInput(
    imsi="001010000000001",
    mac_address="02:00:00:00:00:01",
    apn="internet",
))
sessions.mark_auth_pending(s.id)
sessions.mark_authorized(s.id)
sessions.set_subscriber_ip(s.id, "10.200.0.2")
sessions.mark_pgw_pending(s.id)
sessions.mark_active(s.id)

print(sessions.lookup_by_ip("10.200.0.2").state)   # active

other = sessions.create(CreateInput(imsi="001010000000002"))
try:
    sessions.mark_active(other.id)
except InvalidTransitionError as exc:
    print(exc)   # invalid session state transition: pending -> active
```

Checking a transition directly:

```python
from twag.session.models import State, valid_transition

valid_transition(State.PENDING, State.AUTH_PENDING)   # True
valid_transition(State.PENDING, State.ACTIVE)         # False
```

Describing an EAP payload and reading an identity:

```python
from twag.radius.eap import describe_eap, imsi_from_nai, normalize_mac

info = describe_eap(bytes([1, 7, 0, 8, 50, 1, 0, 0]))
print(info.code, info.type_name, info.subtype_name)   # request aka-prime challenge

print(imsi_from_nai("6001010000000001@wlan.example.com"))  # 001010000000001
print(normalize_mac("02-00-00-00-00-01"))                  # 02:00:00:00:00:01
```

Recording an access point:

```python
from twag.radius.ap_registry import APObservation, APRegistry

registry = APRegistry()
record = registry.update(APObservation(
    source_ip="192.0.2.10",
    called_station_id="02-00-00-00-00-aa:lab",
))
print(record.ssid, record.auth_request_count)   # lab 1
```