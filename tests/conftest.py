"""
Shared pytest fixtures.

Settings fixture
----------------
The `agent_settings` fixture patches the module-level `config.settings`
singleton so every node works inside the test's tmp_path: certificate store,
account key and public suffix cache all live there, no git remote is
configured, retrieval retries do not sleep and no A record is published.

Certificate factory
-------------------
`make_chain(domain, days_valid)` returns a leaf + intermediate PEM chain the
way an ACME server would send it, so storage and renewal-gate code can parse
real certificates.
"""
from __future__ import annotations

import datetime
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from acme_client import jws as jwslib


# ─── Certificates ─────────────────────────────────────────────────────────────

_CA_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
_CA_NAME = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Intermediate")])


def _ca_certificate() -> x509.Certificate:
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(_CA_NAME)
        .issuer_name(_CA_NAME)
        .public_key(_CA_KEY.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(_CA_KEY, hashes.SHA256())
    )


_CA_CERT = _ca_certificate()


def make_chain(domain: str = "example.com", days_valid: int = 90) -> str:
    """Return "<leaf PEM><intermediate PEM>" for *domain*."""
    now = datetime.datetime.now(datetime.timezone.utc)
    leaf_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    leaf = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
        .issuer_name(_CA_NAME)
        .public_key(leaf_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        # +12h so integer day counts are not off by one mid-test
        .not_valid_after(now + datetime.timedelta(days=days_valid, hours=12))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .sign(_CA_KEY, hashes.SHA256())
    )
    return leaf.public_bytes(Encoding.PEM).decode() + _CA_CERT.public_bytes(Encoding.PEM).decode()


@pytest.fixture()
def chain_factory():
    return make_chain


# ─── Keys ─────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def account_key():
    return jwslib.generate_account_key(key_size=2048)


# ─── Settings patch ───────────────────────────────────────────────────────────

@pytest.fixture()
def agent_settings(tmp_path: Path):
    """
    Mutate the live settings singleton to work inside tmp_path,
    restore original values after the test.
    """
    from config import settings

    names = [
        "CERT_STORE_PATH",
        "ACCOUNT_KEY_PATH",
        "DOMAIN_LIST_FILE",
        "CERT_STORE_GIT_URL",
        "ACME_ACCOUNT_EMAIL",
        "ACME_DIRECTORY_URL",
        "PUBLIC_SUFFIX_LIST_PATH",
        "PUBLIC_SUFFIX_LIST_URL",
        "PROPAGATION_TIMEOUT_SECONDS",
        "PROPAGATION_RESOLVERS",
        "PROPAGATION_CHECK_RECURSIVE",
        "PUBLISH_A_RECORD",
        "A_RECORD_ADDRESS",
        "PUBLIC_IP_URL",
        "CLEANUP_ON_PROPAGATION_TIMEOUT",
        "RETRIEVE_MAX_ATTEMPTS",
        "RETRIEVE_DELAY_SECONDS",
        "RENEWAL_THRESHOLD_DAYS",
        "MAX_PARALLEL_DOMAINS",
    ]
    originals = {name: getattr(settings, name) for name in names}

    cert_store = tmp_path / "cert-store"
    cert_store.mkdir()

    settings.CERT_STORE_PATH = str(cert_store)
    settings.ACCOUNT_KEY_PATH = str(cert_store / "le-account.key")
    settings.DOMAIN_LIST_FILE = "cert_list.txt"
    settings.CERT_STORE_GIT_URL = ""
    settings.ACME_ACCOUNT_EMAIL = "certadmin@example.com"
    settings.ACME_DIRECTORY_URL = "https://acme.test/directory"
    settings.PUBLIC_SUFFIX_LIST_PATH = str(tmp_path / "public_suffix_list.dat")
    settings.PUBLIC_SUFFIX_LIST_URL = ""
    settings.PROPAGATION_TIMEOUT_SECONDS = 1
    settings.PROPAGATION_RESOLVERS = []
    settings.PROPAGATION_CHECK_RECURSIVE = True
    settings.PUBLISH_A_RECORD = False
    settings.A_RECORD_ADDRESS = ""
    settings.PUBLIC_IP_URL = "https://ip.test/"
    settings.CLEANUP_ON_PROPAGATION_TIMEOUT = False
    settings.RETRIEVE_MAX_ATTEMPTS = 12
    settings.RETRIEVE_DELAY_SECONDS = 0
    settings.RENEWAL_THRESHOLD_DAYS = 60
    settings.MAX_PARALLEL_DOMAINS = 1

    yield settings

    for k, v in originals.items():
        setattr(settings, k, v)
