"""
Publishing and removing the `_acme-challenge` TXT records.

A provider adapter knows one DNS hosting API.  Cloudflare (via the
`cloudflare` SDK) and Route 53 (via `boto3`) are available; the SDKs are
optional extras and are imported only when their provider is built.
`make_dns_provider()` picks the adapter named by DNS_PROVIDER.

Single-domain runs can also point the domain's A record at this host
(`create_a`, opt-in with PUBLISH_A_RECORD).

All operations are idempotent: creating a record that already carries the
value, or deleting one that is already gone, succeeds.  Everything else the
provider reports becomes a DnsProviderError carrying the HTTP status when the
SDK exposes one.
"""
from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional

from typing_extensions import TypedDict

from acme_client.jws import b64url

logger = logging.getLogger(__name__)

RECORD_TTL = 60


class DnsProviderError(Exception):
    """The DNS provider rejected or failed a record operation."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message if status is None else f"{message} (status {status})")


class RecordHandle(TypedDict):
    zone: str
    name: str
    value: str
    type: str
    record_id: Optional[str]


# ─── Record naming and value ──────────────────────────────────────────────────


def compute_dns_txt_value(key_authorization: str) -> str:
    """Return base64url(SHA-256(key_authorization)) with no padding (RFC 8555 §8.4)."""
    return b64url(hashlib.sha256(key_authorization.encode("ascii")).digest())


def challenge_record_name(fqdn: str) -> str:
    if fqdn.startswith("*."):
        fqdn = fqdn[2:]
    return f"_acme-challenge.{fqdn}"


def _unquote(content: Optional[str]) -> str:
    """TXT contents come back quoted from some APIs."""
    if content and len(content) >= 2 and content[0] == content[-1] == '"':
        return content[1:-1]
    return content or ""


def _status_of(exc: Exception) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        if isinstance(response, dict):
            status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return status if isinstance(status, int) else None


@contextmanager
def _provider_call(action: str, name: str, rtype: str = "TXT") -> Iterator[None]:
    """Wrap SDK errors raised inside the block into DnsProviderError."""
    try:
        yield
    except DnsProviderError:
        raise
    except Exception as exc:
        raise DnsProviderError(f"{action} {rtype} {name} failed: {exc}", status=_status_of(exc)) from exc


# ─── Provider ABC ─────────────────────────────────────────────────────────────


class DnsProvider(ABC):
    """Abstract base for DNS-01 TXT record management."""

    @abstractmethod
    def create(self, zone: str, name: str, value: str) -> RecordHandle:
        """Publish TXT *name* = *value* in *zone*.

        Must be idempotent: an identical existing record is returned as-is.
        """

    @abstractmethod
    def delete(self, zone: str, name: str, value: str) -> None:
        """Remove TXT *name* = *value* from *zone*.

        Must be idempotent: an absent record is not an error.
        """

    @abstractmethod
    def create_a(self, zone: str, name: str, address: str) -> RecordHandle:
        """Point A record *name* in *zone* at *address*, replacing any other address."""


# ─── Cloudflare ───────────────────────────────────────────────────────────────


class CloudflareDnsProvider(DnsProvider):
    """DNS-01 provider backed by the Cloudflare API (cloudflare>=3.0).

    Authenticates with a scoped API token, or with the account e-mail plus the
    global API key.
    """

    def __init__(
        self,
        api_token: str = "",
        api_email: str = "",
        api_key: str = "",
        zone_id: str = "",
    ) -> None:
        try:
            import cloudflare as cf_mod
            self._cf_mod = cf_mod
        except ImportError as exc:
            raise ImportError(
                "cloudflare package is required for DNS_PROVIDER='cloudflare'. "
                "Install it with: pip install '.[dns-cloudflare]'"
            ) from exc

        if not api_token and not (api_email and api_key):
            raise ValueError(
                "Cloudflare needs CLOUDFLARE_API_TOKEN or CLOUDFLARE_API_EMAIL + CLOUDFLARE_API_KEY"
            )
        self._api_token = api_token
        self._api_email = api_email
        self._api_key = api_key
        self._explicit_zone_id = zone_id
        self._zone_ids: dict[str, str] = {}

    def _get_client(self):
        if self._api_token:
            return self._cf_mod.Cloudflare(api_token=self._api_token)
        return self._cf_mod.Cloudflare(api_email=self._api_email, api_key=self._api_key)

    def _resolve_zone_id(self, cf, zone: str) -> str:
        if self._explicit_zone_id:
            return self._explicit_zone_id
        if zone not in self._zone_ids:
            zones = [z for z in cf.zones.list(name=zone) if getattr(z, "name", zone) == zone]
            if not zones:
                raise DnsProviderError(f"Cloudflare zone {zone} not found", status=404)
            self._zone_ids[zone] = zones[0].id
        return self._zone_ids[zone]

    def _matching(self, cf, zone_id: str, name: str, value: str) -> list:
        records = cf.dns.records.list(zone_id=zone_id, name=name, type="TXT")
        return [r for r in records if _unquote(getattr(r, "content", None)) == value]

    def create(self, zone: str, name: str, value: str) -> RecordHandle:
        with _provider_call("create", name):
            cf = self._get_client()
            zone_id = self._resolve_zone_id(cf, zone)

            existing = self._matching(cf, zone_id, name, value)
            if existing:
                logger.debug("TXT record %s already exists; skipping create", name)
                record_id = existing[0].id
            else:
                record = cf.dns.records.create(
                    zone_id=zone_id, type="TXT", name=name, content=value, ttl=RECORD_TTL
                )
                record_id = getattr(record, "id", None)
                logger.info("Created Cloudflare TXT record %s in %s", name, zone)

        return RecordHandle(zone=zone, name=name, value=value, type="TXT", record_id=record_id)

    def delete(self, zone: str, name: str, value: str) -> None:
        with _provider_call("delete", name):
            cf = self._get_client()
            zone_id = self._resolve_zone_id(cf, zone)

            records = self._matching(cf, zone_id, name, value)
            if not records:
                logger.debug("TXT record %s not found; nothing to delete", name)
                return
            for record in records:
                cf.dns.records.delete(record.id, zone_id=zone_id)
            logger.info("Deleted Cloudflare TXT record %s from %s", name, zone)

    def create_a(self, zone: str, name: str, address: str) -> RecordHandle:
        with _provider_call("create", name, "A"):
            cf = self._get_client()
            zone_id = self._resolve_zone_id(cf, zone)

            records = list(cf.dns.records.list(zone_id=zone_id, name=name, type="A"))
            current = [r for r in records if getattr(r, "content", None) == address]
            if current:
                logger.debug("A record %s already points at %s", name, address)
                record_id = current[0].id
            elif records:
                cf.dns.records.update(
                    records[0].id, zone_id=zone_id, type="A", name=name, content=address, ttl=RECORD_TTL
                )
                record_id = records[0].id
                logger.info("Moved Cloudflare A record %s to %s", name, address)
            else:
                record = cf.dns.records.create(
                    zone_id=zone_id, type="A", name=name, content=address, ttl=RECORD_TTL
                )
                record_id = getattr(record, "id", None)
                logger.info("Created Cloudflare A record %s -> %s", name, address)

        return RecordHandle(zone=zone, name=name, value=address, type="A", record_id=record_id)


# ─── Route 53 ─────────────────────────────────────────────────────────────────


class Route53DnsProvider(DnsProvider):
    """DNS-01 provider backed by AWS Route 53 (boto3).

    Route 53 keeps every TXT value of a name in one record set, so create and
    delete rewrite the set and leave unrelated values in place.
    """

    def __init__(
        self,
        hosted_zone_id: str = "",
        region: str = "us-east-1",
        access_key_id: str = "",
        secret_access_key: str = "",
    ) -> None:
        try:
            import boto3
            self._boto3 = boto3
        except ImportError as exc:
            raise ImportError(
                "boto3 package is required for DNS_PROVIDER='route53'. "
                "Install it with: pip install '.[dns-route53]'"
            ) from exc

        self._explicit_zone_id = hosted_zone_id
        self._region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key

    def _get_client(self):
        kwargs: dict = {"region_name": self._region}
        if self._access_key_id:
            kwargs["aws_access_key_id"] = self._access_key_id
        if self._secret_access_key:
            kwargs["aws_secret_access_key"] = self._secret_access_key
        return self._boto3.client("route53", **kwargs)

    def _resolve_zone_id(self, client, zone: str) -> str:
        if self._explicit_zone_id:
            return self._explicit_zone_id

        fq_zone = zone.rstrip(".") + "."
        response = client.list_hosted_zones_by_name(DNSName=fq_zone, MaxItems="1")
        zones = response.get("HostedZones", [])
        if zones and zones[0]["Name"] == fq_zone:
            # Bare ID from "/hostedzone/ZXXXXX"
            return zones[0]["Id"].split("/")[-1]
        raise DnsProviderError(f"Route53 hosted zone {zone} not found", status=404)

    def _current_values(self, client, zone_id: str, fq_name: str, rtype: str = "TXT") -> List[str]:
        response = client.list_resource_record_sets(
            HostedZoneId=zone_id, StartRecordName=fq_name, StartRecordType=rtype, MaxItems="1"
        )
        for rrset in response.get("ResourceRecordSets", []):
            if rrset["Name"] == fq_name and rrset["Type"] == rtype:
                return [_unquote(r["Value"]) for r in rrset.get("ResourceRecords", [])]
        return []

    def _change(
        self, client, zone_id: str, action: str, fq_name: str, values: List[str], rtype: str = "TXT"
    ) -> None:
        if rtype == "TXT":
            # Route53 requires TXT values wrapped in double-quotes
            values = [f'"{v}"' for v in values]
        client.change_resource_record_sets(
            HostedZoneId=zone_id,
            ChangeBatch={
                "Changes": [
                    {
                        "Action": action,
                        "ResourceRecordSet": {
                            "Name": fq_name,
                            "Type": rtype,
                            "TTL": RECORD_TTL,
                            "ResourceRecords": [{"Value": v} for v in values],
                        },
                    }
                ]
            },
        )

    def create(self, zone: str, name: str, value: str) -> RecordHandle:
        fq_name = name.rstrip(".") + "."
        with _provider_call("create", name):
            client = self._get_client()
            zone_id = self._resolve_zone_id(client, zone)
            values = self._current_values(client, zone_id, fq_name)
            if value in values:
                logger.debug("TXT record %s already carries the value; skipping create", name)
            else:
                self._change(client, zone_id, "UPSERT", fq_name, values + [value])
                logger.info("Created Route53 TXT record %s in %s", name, zone)

        return RecordHandle(zone=zone, name=name, value=value, type="TXT", record_id=zone_id)

    def delete(self, zone: str, name: str, value: str) -> None:
        fq_name = name.rstrip(".") + "."
        with _provider_call("delete", name):
            client = self._get_client()
            zone_id = self._resolve_zone_id(client, zone)
            values = self._current_values(client, zone_id, fq_name)
            if value not in values:
                logger.debug("TXT record %s not found; nothing to delete", name)
                return

            remaining = [v for v in values if v != value]
            if remaining:
                self._change(client, zone_id, "UPSERT", fq_name, remaining)
            else:
                # DELETE must match the existing set exactly
                self._change(client, zone_id, "DELETE", fq_name, values)
            logger.info("Deleted Route53 TXT record %s from %s", name, zone)

    def create_a(self, zone: str, name: str, address: str) -> RecordHandle:
        fq_name = name.rstrip(".") + "."
        with _provider_call("create", name, "A"):
            client = self._get_client()
            zone_id = self._resolve_zone_id(client, zone)
            if self._current_values(client, zone_id, fq_name, "A") == [address]:
                logger.debug("A record %s already points at %s", name, address)
            else:
                self._change(client, zone_id, "UPSERT", fq_name, [address], "A")
                logger.info("Set Route53 A record %s -> %s", name, address)

        return RecordHandle(zone=zone, name=name, value=address, type="A", record_id=zone_id)


# ─── Factory ──────────────────────────────────────────────────────────────────


def make_dns_provider() -> DnsProvider:
    """The provider selected by DNS_PROVIDER, built from the current settings."""
    from config import settings  # late import to avoid circular dependency

    provider = settings.DNS_PROVIDER

    if provider == "cloudflare":
        return CloudflareDnsProvider(
            api_token=settings.CLOUDFLARE_API_TOKEN,
            api_email=settings.CLOUDFLARE_API_EMAIL,
            api_key=settings.CLOUDFLARE_API_KEY,
            zone_id=settings.CLOUDFLARE_ZONE_ID,
        )
    elif provider == "route53":
        return Route53DnsProvider(
            hosted_zone_id=settings.AWS_ROUTE53_HOSTED_ZONE_ID,
            region=settings.AWS_REGION,
            access_key_id=settings.AWS_ACCESS_KEY_ID,
            secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        )
    else:
        raise ValueError(
            f"Unknown DNS_PROVIDER: {provider!r}. Must be one of: cloudflare, route53"
        )
