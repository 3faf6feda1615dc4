from datetime import datetime, timedelta, timezone

import pytest

from twag.session.authcache import AuthCache, auth_acct_key, auth_cache_key
from twag.session.models import AuthCacheUpdate

MAC = "aa:bb:cc:dd:ee:01"
IMSI = "001010000000001"


@pytest.fixture
def cache():
    return AuthCache()


def _update(**kwargs):
    values = {"mac_address": MAC, "imsi": IMSI}
    values.update(kwargs)
    return AuthCacheUpdate(**values)


def test_auth_cache_key_normalises_parts():
    key = auth_cache_key("AA-BB-CC-DD-EE-01", f" {IMSI} ", " Internet ")
    assert key == f"{MAC}|{IMSI}|internet"


def test_auth_acct_key_trims_parts():
    assert auth_acct_key(" acct-1 ", " 192.0.2.10 ", "ap-1") == "acct-1|192.0.2.10|ap-1"


@pytest.mark.parametrize("mac,imsi", [("", IMSI), (MAC, ""), (MAC, "   ")])
def test_upsert_requires_mac_and_imsi(cache, mac, imsi):
    assert cache.upsert(AuthCacheUpdate(mac_address=mac, imsi=imsi)) is None
    assert cache.lookup_valid(mac, imsi, "") is None


def test_upsert_normalises_and_stamps(cache):
    entry = cache.upsert(
        AuthCacheUpdate(mac_address="AA-BB-CC-DD-EE-01", imsi=f" {IMSI} ", apn=" internet ")
    )
    assert entry.mac_address == MAC
    assert entry.imsi == IMSI
    assert entry.apn == "internet"
    assert entry.auth_start_time is not None
    assert entry.auth_start_time == entry.last_seen_time


def test_upsert_merges_without_clearing(cache):
    cache.upsert(_update(user_name="user", session_timeout_seconds=300))
    merged = cache.upsert(_update(msisdn="17892000001"))
    assert merged.user_name == "user"
    assert merged.msisdn == "17892000001"
    assert merged.session_timeout_seconds == 300


def test_lookup_falls_back_to_entry_without_apn(cache):
    cache.upsert(_update())
    found = cache.lookup_valid(MAC, IMSI, "internet")
    assert found is not None and found.imsi == IMSI


def test_lookup_by_mac_or_imsi_alone(cache):
    cache.upsert(_update(apn="internet"))
    assert cache.lookup_valid("AA-BB-CC-DD-EE-01", "", "").imsi == IMSI
    assert cache.lookup_valid("", IMSI, "").mac_address == MAC


def test_lookup_rejects_other_apn(cache):
    cache.upsert(_update(apn="internet"))
    assert cache.lookup_valid(MAC, IMSI, "ims") is None
    assert cache.lookup_valid(MAC, IMSI, "INTERNET").apn == "internet"


def test_expired_entry_is_dropped(cache):
    expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
    cache.upsert(_update(auth_expires_at=expires))
    assert cache.lookup_valid(MAC, IMSI, "", expires - timedelta(seconds=1)) is not None
    assert cache.lookup_valid(MAC, IMSI, "", expires) is None
    assert cache.lookup_valid(MAC, IMSI, "", expires - timedelta(seconds=1)) is None


def test_lookup_by_acct_tries_less_specific_keys(cache):
    cache.upsert(_update(acct_session_id="acct-1", nas_ip="192.0.2.10", nas_identifier="ap-1"))
    exact = cache.lookup_valid_by_acct("acct-1", "192.0.2.10", "ap-1")
    assert exact.imsi == IMSI
    loose = cache.lookup_valid_by_acct("acct-1", "198.51.100.1", "other")
    assert loose.mac_address == MAC
    assert cache.lookup_valid_by_acct("", "192.0.2.10", "ap-1") is None
    assert cache.lookup_valid_by_acct("acct-2", "", "") is None


def test_acct_index_follows_changes(cache):
    cache.upsert(_update(acct_session_id="acct-1"))
    cache.upsert(_update(acct_session_id="acct-2"))
    assert cache.lookup_valid_by_acct("acct-1", "", "") is None
    assert cache.lookup_valid_by_acct("acct-2", "", "").acct_session_id == "acct-2"


def test_acct_lookup_skips_expired(cache):
    expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
    cache.upsert(_update(acct_session_id="acct-1", auth_expires_at=expires))
    assert cache.lookup_valid_by_acct("acct-1", "", "", expires + timedelta(hours=1)) is None
    assert cache.lookup_valid(MAC, IMSI, "", expires - timedelta(hours=1)) is None


def test_delete(cache):
    cache.upsert(_update(apn="internet"))
    assert cache.delete(MAC, IMSI, "internet") is True
    assert cache.lookup_valid(MAC, IMSI, "internet") is None
    assert cache.delete(MAC, IMSI, "internet") is False


def test_delete_falls_back_to_mac(cache):
    cache.upsert(_update(apn="internet"))
    assert cache.delete("AA-BB-CC-DD-EE-01", "", "") is True
    assert cache.lookup_valid("", IMSI, "") is None


def test_returned_entries_are_copies(cache):
    entry = cache.upsert(_update(user_name="user"))
    entry.user_name = "changed"
    assert cache.lookup_valid(MAC, IMSI, "").user_name == "user"