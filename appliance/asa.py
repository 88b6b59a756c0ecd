"""
Cisco ASA trust-point import.

Packages a stored key + leaf certificate as PKCS#12, pushes it to the ASA
through its REST API CLI endpoint (POST /api/cli) and, only once the import
succeeded, binds the trust point to the outside interface and saves the
running configuration.
"""
from __future__ import annotations

import base64
import logging
from typing import List, Optional

import requests
import urllib3
from cryptography import x509
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, load_pem_private_key, pkcs12
from typing_extensions import TypedDict

from storage.filesystem import ArtifactKind, CertificateStore

logger = logging.getLogger(__name__)

# ASA CLI output markers for a rejected command
_ERROR_MARKERS = ("ERROR:", "% Invalid", "% Incomplete")


class ApplianceImportError(Exception):
    """The certificate could not be packaged or imported into the appliance."""


class ImportResult(TypedDict):
    domain: str
    trustpoint: str
    pkcs12_path: str
    imported: bool
    assigned: bool
    saved: bool


def build_pkcs12(key_pem: bytes, cert_pem: bytes, friendly_name: str, passphrase: str) -> bytes:
    """PKCS#12 with the key and the leaf certificate, encrypted with *passphrase*."""
    key = load_pem_private_key(key_pem, password=None)
    cert = x509.load_pem_x509_certificate(cert_pem)
    return pkcs12.serialize_key_and_certificates(
        name=friendly_name.encode(),
        key=key,  # type: ignore[arg-type]
        cert=cert,
        cas=None,
        encryption_algorithm=BestAvailableEncryption(passphrase.encode()),
    )


def wrap_base64(data: bytes, width: int = 64) -> List[str]:
    encoded = base64.b64encode(data).decode("ascii")
    return [encoded[i:i + width] for i in range(0, len(encoded), width)]


# ─── REST transport ───────────────────────────────────────────────────────────


class AsaRestClient:
    def __init__(self, host: str, username: str, password: str, verify: bool = True, timeout: int = 60) -> None:
        self.base = f"https://{host}"
        self.timeout = timeout
        self._session = requests.Session()
        self._session.auth = (username, password)
        # The ASA REST agent rejects requests without this User-Agent
        self._session.headers.update({"User-Agent": "REST API Agent"})
        if not verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self._session.verify = False

    def run(self, commands: List[str]) -> List[str]:
        """Execute CLI *commands* in one session and return the per-command output."""
        try:
            resp = self._session.post(f"{self.base}/api/cli", json={"commands": commands}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ApplianceImportError(f"ASA unreachable: {exc}") from exc
        if not resp.ok:
            raise ApplianceImportError(f"ASA CLI request failed ({resp.status_code}): {resp.text[:200]}")

        try:
            output = resp.json().get("response", [])
        except ValueError as exc:
            raise ApplianceImportError(f"ASA returned a non-JSON response: {resp.text[:200]}") from exc

        for line in output:
            if any(marker in line for marker in _ERROR_MARKERS):
                raise ApplianceImportError(f"ASA rejected the command: {line.strip()}")
        return output


# ─── Importer ─────────────────────────────────────────────────────────────────


class ApplianceImporter:
    def __init__(
        self,
        store: CertificateStore,
        client: AsaRestClient,
        trustpoint: str = "RAVPN",
        interface: str = "outside",
    ) -> None:
        self.store = store
        self.client = client
        self.trustpoint = trustpoint
        self.interface = interface

    def import_certificate(self, domain: str, passphrase: str) -> ImportResult:
        if not passphrase:
            raise ApplianceImportError("a PKCS#12 passphrase is required")

        key_pem = self.store.read_existing(domain, ArtifactKind.KEY)
        cert_pem = self.store.read_existing(domain, ArtifactKind.CERT)
        if key_pem is None or cert_pem is None:
            raise ApplianceImportError(f"no issued certificate and key for {domain} in the store")

        try:
            p12 = build_pkcs12(key_pem, cert_pem, friendly_name=domain, passphrase=passphrase)
            p12_path = self.store.write_artifact(domain, ArtifactKind.PKCS12, p12)
        except (ValueError, TypeError, OSError) as exc:
            raise ApplianceImportError(f"cannot build PKCS#12 for {domain}: {exc}") from exc

        commands = [f"crypto ca import {self.trustpoint} pkcs12 {passphrase} nointeractive"]
        commands += wrap_base64(p12) + ["quit"]
        self.client.run(commands)
        logger.info("Imported %s into trust point %s", domain, self.trustpoint)

        self.client.run([f"ssl trust-point {self.trustpoint} {self.interface}"])
        self.client.run(["write memory"])
        logger.info("Assigned trust point %s to %s and saved the configuration", self.trustpoint, self.interface)

        return ImportResult(
            domain=domain,
            trustpoint=self.trustpoint,
            pkcs12_path=str(p12_path),
            imported=True,
            assigned=True,
            saved=True,
        )


def make_importer(store: Optional[CertificateStore] = None) -> ApplianceImporter:
    """Build an importer from settings (mirrors make_client())."""
    from config import settings  # late import to avoid circular dependency
    from storage.filesystem import make_store

    if not settings.ASA_HOST:
        raise ApplianceImportError("ASA_HOST is not configured")
    client = AsaRestClient(
        settings.ASA_HOST,
        settings.ASA_USERNAME,
        settings.ASA_PASSWORD,
        verify=settings.ASA_VERIFY_TLS,
    )
    return ApplianceImporter(
        store or make_store(),
        client,
        trustpoint=settings.TRUSTPOINT_NAME,
        interface=settings.TRUSTPOINT_INTERFACE,
    )
