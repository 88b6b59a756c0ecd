"""
Point a single domain's A record at this host before issuing for it.

Enabled with PUBLISH_A_RECORD.  The address is A_RECORD_ADDRESS when set,
otherwise the public IPv4 address PUBLIC_IP_URL reports for this host.
"""
from __future__ import annotations

import ipaddress
import logging

import requests

from dns01.providers import RecordHandle, make_dns_provider

logger = logging.getLogger(__name__)


class AddressLookupError(Exception):
    """This host's public address could not be determined."""


def discover_public_ip(url: str, timeout: int = 10) -> str:
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise AddressLookupError(f"public IP lookup at {url} failed: {exc}") from exc

    text = resp.text.strip()
    try:
        return str(ipaddress.IPv4Address(text))
    except ValueError as exc:
        raise AddressLookupError(f"{url} answered {text!r}, not an IPv4 address") from exc


def publish_address_record(fqdn: str, zone: str) -> RecordHandle:
    """Create or move the A record for *fqdn* in *zone*. Raises AddressLookupError or DnsProviderError."""
    from config import settings  # late import to avoid circular dependency

    address = settings.A_RECORD_ADDRESS or discover_public_ip(settings.PUBLIC_IP_URL)
    logger.info("Pointing %s at %s", fqdn, address)
    return make_dns_provider().create_a(zone, fqdn, address)
