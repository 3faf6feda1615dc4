import pytest

from twag.radius.eap import (
    EAPDescription,
    describe_eap,
    eap_aka_subtype_name,
    eap_code_name,
    eap_identity,
    eap_type_name,
    imsi_from_nai,
    looks_like_imsi,
    normalize_mac,
)


def eap_response_identity(identifier: int, identity: str) -> bytes:
    body = identity.encode()
    length = 5 + len(body)
    return bytes([2, identifier]) + length.to_bytes(2, "big") + bytes([1]) + body


def test_describe_eap_names_aka_prime_subtype():
    info = describe_eap(bytes([1, 7, 0, 8, 50, 1, 0, 0]))
    assert info.code == "request"
    assert info.identifier == 7
    assert info.type == 50
    assert info.type_name == "aka-prime"
    assert info.subtype == 1
    assert info.subtype_name == "challenge"


def test_describe_eap_short_payload_is_empty():
    assert describe_eap(b"\x01\x02") == EAPDescription()


def test_describe_eap_invalid_length():
    info = describe_eap(bytes([1, 3, 0, 40, 23]))
    assert info.code == "invalid"
    assert info.identifier == 3
    assert info.type == -1


def test_describe_eap_success_has_no_type():
    info = describe_eap(bytes([3, 1, 0, 4]))
    assert info.code == "success"
    assert info.identifier == 1
    assert (info.type, info.subtype) == (-1, -1)


def test_describe_eap_identity_response_has_no_subtype():
    info = describe_eap(eap_response_identity(9, "ident"))
    assert info.code == "response"
    assert info.type == 1
    assert info.type_name == "identity"
    assert info.subtype == -1


@pytest.mark.parametrize(
    "code, name", [(1, "request"), (2, "response"), (3, "success"), (4, "failure"), (9, "code-9")]
)
def test_eap_code_name(code, name):
    assert eap_code_name(code) == name


@pytest.mark.parametrize(
    "type_, name", [(1, "identity"), (18, "sim"), (23, "aka"), (50, "aka-prime"), (4, "type-4")]
)
def test_eap_type_name(type_, name):
    assert eap_type_name(type_) == name


@pytest.mark.parametrize(
    "subtype, name",
    [
        (1, "challenge"),
        (2, "authentication-rejection"),
        (4, "synchronization-failure"),
        (5, "identity"),
        (12, "client-error"),
        (14, "notification"),
        (3, "subtype-3"),
    ],
)
def test_eap_aka_subtype_name(subtype, name):
    assert eap_aka_subtype_name(subtype) == name


def test_eap_identity_from_response_identity():
    assert eap_identity(bytes([2, 1, 0, 10, 1]) + b"ident") == "ident"


def test_eap_identity_round_trip():
    identity = "0001010000000001@example.com"
    assert eap_identity(eap_response_identity(7, identity)) == identity


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        bytes([2, 1, 0, 4]),
        bytes([1, 1, 0, 10, 1]) + b"ident",
        bytes([2, 1, 0, 10, 23]) + b"ident",
        bytes([2, 1, 0, 40, 1]) + b"ident",
    ],
)
def test_eap_identity_rejects_other_payloads(payload):
    assert eap_identity(payload) == ""


@pytest.mark.parametrize(
    "value, expected",
    [
        ("12345", True),
        ("123456789012345", True),
        ("1234", False),
        ("1234567890123456", False),
        ("12a45", False),
    ],
)
def test_looks_like_imsi(value, expected):
    assert looks_like_imsi(value) is expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("AA-BB-CC-DD-EE-01", "aa:bb:cc:dd:ee:01"),
        ("aabb.ccdd.ee01", "aa:bb:cc:dd:ee:01"),
        ("AABBCCDDEE01", "aa:bb:cc:dd:ee:01"),
        ("aa:bb:cc:dd:ee:01", "aa:bb:cc:dd:ee:01"),
        ("  ", ""),
        ("NotAMac", "notamac"),
    ],
)
def test_normalize_mac(value, expected):
    assert normalize_mac(value) == expected