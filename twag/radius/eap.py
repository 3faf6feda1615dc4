"""Inspection of EAP payloads and subscriber identifiers carried in RADIUS."""

from __future__ import annotations

from dataclasses import dataclass

_DIGITS = frozenset("0123456789")

_CODE_NAMES = {1: "request", 2: "response", 3: "success", 4: "failure"}
_TYPE_NAMES = {1: "identity", 18: "sim", 23: "aka", 50: "aka-prime"}
_AKA_SUBTYPE_NAMES = {
    1: "challenge",
    2: "authentication-rejection",
    4: "synchronization-failure",
    5: "identity",
    12: "client-error",
    14: "notification",
}
_AKA_TYPES = frozenset({23, 50})


@dataclass
class EAPDescription:
    """Summary of an EAP packet header for logging; -1 marks absent numbers."""

    code: str = ""
    identifier: int = -1
    type: int = -1
    type_name: str = ""
    subtype: int = -1
    subtype_name: str = ""


def eap_code_name(code: int) -> str:
    return _CODE_NAMES.get(code, f"code-{code}")


def eap_type_name(type_: int) -> str:
    return _TYPE_NAMES.get(type_, f"type-{type_}")


def eap_aka_subtype_name(subtype: int) -> str:
    return _AKA_SUBTYPE_NAMES.get(subtype, f"subtype-{subtype}")


def describe_eap(payload: bytes) -> EAPDescription:
    """Describe the code, identifier, type and EAP-AKA subtype of a payload."""
    desc = EAPDescription()
    if len(payload) < 4:
        return desc
    desc.code = eap_code_name(payload[0])
    desc.identifier = payload[1]
    length = int.from_bytes(payload[2:4], "big")
    if length > len(payload) or length < 4:
        desc.code = "invalid"
        return desc
    if payload[0] in (1, 2) and length >= 5:
        desc.type = payload[4]
        desc.type_name = eap_type_name(payload[4])
        if payload[4] in _AKA_TYPES and length >= 6:
            desc.subtype = payload[5]
            desc.subtype_name = eap_aka_subtype_name(payload[5])
    return desc


def eap_identity(payload: bytes) -> str:
    """Identity from an EAP-Response/Identity, or "" for any other payload."""
    if len(payload) < 5:
        return ""
    length = int.from_bytes(payload[2:4], "big")
    if payload[0] != 2 or length > len(payload) or payload[4] != 1:
        return ""
    return bytes(payload[5:length]).decode("utf-8", errors="replace")


def looks_like_imsi(value: str) -> bool:
    """Between 5 and 15 ASCII digits."""
    return 5 <= len(value) <= 15 and set(value) <= _DIGITS


def imsi_from_nai(username: str) -> str:
    """IMSI from a permanent NAI identity, stripping an AKA ('0') or AKA' ('6') prefix."""
    local = username.partition("@")[0].strip()
    if len(local) > 1 and local[0] in "06" and looks_like_imsi(local[1:]):
        return local[1:]
    if looks_like_imsi(local):
        return local
    return ""


def normalize_mac(value: str) -> str:
    """Lowercase colon-separated MAC from dash, dot or bare hex forms.

    Values that do not fit one of those shapes are returned lowercased.
    """
    value = value.lower().strip()
    if not value:
        return ""
    value = value.replace("-", ":").replace(".", "")
    if value.count(":") == 5 or len(value) != 12:
        return value
    return ":".join(value[i : i + 2] for i in range(0, 12, 2))