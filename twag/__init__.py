"""Trusted WLAN access gateway: sessions, EAP identity helpers, AP registry and access routing."""

__version__ = "0.1.0"