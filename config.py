"""
Application configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.
"""
from __future__ import annotations

import os
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class _CommaFallbackMixin:
    """Return the raw string when JSON parsing fails.

    pydantic-settings ≥2.7 calls json.loads() on complex-typed fields
    (e.g. List[str]) before field_validators run.  A plain comma-separated
    value like ``1.1.1.1,8.8.8.8`` is not valid JSON and raises SettingsError
    before the split validators can handle it.  This mixin catches that
    ValueError and returns the raw string so the field_validator receives it
    and can split on commas as intended.
    """

    def prepare_field_value(self, field_name, field, value, value_is_complex):  # type: ignore[override]
        try:
            return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]
        except ValueError:
            return value


class _CSVEnvSource(_CommaFallbackMixin, EnvSettingsSource):
    pass


class _CSVDotEnvSource(_CommaFallbackMixin, DotEnvSettingsSource):
    pass


_DIRECTORY_PRESETS = {
    "letsencrypt":         "https://acme-v02.api.letsencrypt.org/directory",
    "letsencrypt_staging": "https://acme-staging-v02.api.letsencrypt.org/directory",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── CA / ACME account ──────────────────────────────────────────────────
    CA_PROVIDER: Literal["letsencrypt", "letsencrypt_staging", "custom"] = "letsencrypt"
    # Only consulted when CA_PROVIDER="custom"
    ACME_DIRECTORY_URL: str = ""
    ACME_ACCOUNT_EMAIL: str = ""

    # ── Certificate repository ─────────────────────────────────────────────
    CERT_STORE_PATH: str = "~/cert-store"
    ACCOUNT_KEY_PATH: str = ""          # empty = <CERT_STORE_PATH>/le-account.key
    DOMAIN_LIST_FILE: str = "cert_list.txt"
    RENEWAL_THRESHOLD_DAYS: int = 60
    CERT_STORE_GIT_URL: str = ""        # empty = plain directory, no clone/commit/push
    GIT_USER_NAME: str = "Certificate agent"
    GIT_USER_EMAIL: str = "certadmin@donotreply.invalid"

    # ── DNS provider ───────────────────────────────────────────────────────
    DNS_PROVIDER: Literal["cloudflare", "route53"] = "cloudflare"
    CLOUDFLARE_API_TOKEN: str = ""
    CLOUDFLARE_API_EMAIL: str = ""      # legacy global key auth (email + key)
    CLOUDFLARE_API_KEY: str = ""
    CLOUDFLARE_ZONE_ID: str = ""
    AWS_ROUTE53_HOSTED_ZONE_ID: str = ""
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""

    # ── Address record (single-domain mode) ────────────────────────────────
    PUBLISH_A_RECORD: bool = False
    A_RECORD_ADDRESS: str = ""          # empty = this host's public IPv4 address
    PUBLIC_IP_URL: str = "https://api.ipify.org"

    # ── Propagation / retrieval ────────────────────────────────────────────
    PROPAGATION_TIMEOUT_SECONDS: int = 120
    PROPAGATION_POLL_INTERVAL_SECONDS: float = 5.0
    PROPAGATION_NAMESERVERS: List[str] = []   # empty = ask the zone's authoritative servers
    # Recursive resolvers that must also see the record; empty = system resolver
    PROPAGATION_RESOLVERS: List[str] = []
    PROPAGATION_CHECK_RECURSIVE: bool = True
    CLEANUP_ON_PROPAGATION_TIMEOUT: bool = False
    RETRIEVE_MAX_ATTEMPTS: int = 12
    RETRIEVE_DELAY_SECONDS: float = 10.0
    MAX_PARALLEL_DOMAINS: int = 1

    # ── Public suffix list ─────────────────────────────────────────────────
    PUBLIC_SUFFIX_LIST_PATH: str = ""   # empty = ~/.cache/dns01-cert-agent/public_suffix_list.dat
    PUBLIC_SUFFIX_LIST_URL: str = "https://publicsuffix.org/list/public_suffix_list.dat"

    # ── Scheduling ─────────────────────────────────────────────────────────
    SCHEDULE_TIME: str = "06:00"

    # ── ACME TLS (for testing against Pebble / self-signed CAs) ───────────
    ACME_CA_BUNDLE: str = ""       # Path to CA cert bundle; empty = system default
    ACME_INSECURE: bool = False    # Skip TLS verification (never use in production)

    # ── Appliance (Cisco ASA trust point import) ──────────────────────────
    ASA_HOST: str = ""
    ASA_USERNAME: str = ""
    ASA_PASSWORD: str = ""
    ASA_VERIFY_TLS: bool = True
    TRUSTPOINT_NAME: str = "RAVPN"
    TRUSTPOINT_INTERFACE: str = "outside"
    PKCS12_PASSPHRASE: str = ""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            _CSVEnvSource(settings_cls),
            _CSVDotEnvSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("PROPAGATION_NAMESERVERS", "PROPAGATION_RESOLVERS", mode="before")
    @classmethod
    def parse_nameservers(cls, v: object) -> List[str]:
        """Accept comma-separated string or list."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v  # type: ignore[return-value]

    @field_validator("RENEWAL_THRESHOLD_DAYS", "RETRIEVE_MAX_ATTEMPTS", "MAX_PARALLEL_DOMAINS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @model_validator(mode="after")
    def resolve_paths(self) -> "Settings":
        self.CERT_STORE_PATH = os.path.expanduser(self.CERT_STORE_PATH)
        if not self.ACCOUNT_KEY_PATH:
            self.ACCOUNT_KEY_PATH = os.path.join(self.CERT_STORE_PATH, "le-account.key")
        if not self.PUBLIC_SUFFIX_LIST_PATH:
            # Outside CERT_STORE_PATH: commits stage the whole store
            cache_home = os.environ.get("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
            self.PUBLIC_SUFFIX_LIST_PATH = os.path.join(
                cache_home, "dns01-cert-agent", "public_suffix_list.dat"
            )
        self.PUBLIC_SUFFIX_LIST_PATH = os.path.expanduser(self.PUBLIC_SUFFIX_LIST_PATH)
        return self

    @model_validator(mode="after")
    def validate_dns_credentials(self) -> "Settings":
        # Credentials are checked lazily at provider construction when none
        # are configured at all, so importing settings never fails in tests.
        if self.DNS_PROVIDER == "cloudflare":
            if bool(self.CLOUDFLARE_API_EMAIL) != bool(self.CLOUDFLARE_API_KEY):
                raise ValueError(
                    "CLOUDFLARE_API_EMAIL and CLOUDFLARE_API_KEY must be set together"
                )
            if self.CLOUDFLARE_API_TOKEN and self.CLOUDFLARE_API_KEY:
                raise ValueError(
                    "Set either CLOUDFLARE_API_TOKEN or CLOUDFLARE_API_EMAIL/CLOUDFLARE_API_KEY, not both"
                )
        return self

    @model_validator(mode="after")
    def resolve_acme_directory(self) -> "Settings":
        if self.CA_PROVIDER in _DIRECTORY_PRESETS:
            self.ACME_DIRECTORY_URL = _DIRECTORY_PRESETS[self.CA_PROVIDER]
        elif not self.ACME_DIRECTORY_URL:
            raise ValueError("ACME_DIRECTORY_URL must be set when CA_PROVIDER='custom'")
        return self

    def account_contacts(self, fallback_zone: Optional[str] = None) -> List[str]:
        """Return the ACME account contact URIs."""
        if self.ACME_ACCOUNT_EMAIL:
            return [f"mailto:{self.ACME_ACCOUNT_EMAIL}"]
        if fallback_zone:
            return [f"mailto:nomail@{fallback_zone}"]
        return []


# Module-level singleton; import and use everywhere.
settings = Settings()
