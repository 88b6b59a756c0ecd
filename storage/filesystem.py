"""
Certificate repository on the local filesystem.

Directory layout per domain:
  <root>/<domain>/
      <domain>.key                — Private key (mode 0o600, never overwritten)
      <domain>.csr                — Certificate signing request
      <domain>.crt                — Leaf certificate
      <domain>-fullchain.crt      — Leaf + intermediates
      <domain>-intermediate.crt   — Intermediates only
      <domain>.p12                — PKCS#12 bundle (appliance import)

All writes are atomic: temp file + fsync + atomic rename.  When the store is
backed by a git repository, `commit()` records and pushes the run's changes.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from typing_extensions import TypedDict

from acme_client.crypto import days_until_expiry, parse_expiry
from storage.atomic import atomic_write_bytes
from storage.git_sync import GitRepository

logger = logging.getLogger(__name__)


class ArtifactKind(str, Enum):
    KEY = "key"
    CSR = "csr"
    CERT = "cert"
    FULLCHAIN = "fullchain"
    CHAIN = "chain"
    PKCS12 = "pkcs12"

    @property
    def suffix(self) -> str:
        return _SUFFIXES[self]


_SUFFIXES = {
    ArtifactKind.KEY: ".key",
    ArtifactKind.CSR: ".csr",
    ArtifactKind.CERT: ".crt",
    ArtifactKind.FULLCHAIN: "-fullchain.crt",
    ArtifactKind.CHAIN: "-intermediate.crt",
    ArtifactKind.PKCS12: ".p12",
}

_PRIVATE_KINDS = {ArtifactKind.KEY, ArtifactKind.PKCS12}


class CertStoreEntry(TypedDict):
    domain: str
    key_path: str
    csr_path: str
    cert_path: str
    fullchain_path: str
    chain_path: str


# ─── Interface ────────────────────────────────────────────────────────────────


class CertificateStore(ABC):
    """Where keys, CSRs and issued certificates are kept between runs."""

    @abstractmethod
    def path_for(self, domain: str, kind: ArtifactKind) -> Path:
        """Return the location of *kind* for *domain*."""

    @abstractmethod
    def write_artifact(self, domain: str, kind: ArtifactKind, data: Union[bytes, str]) -> Path:
        """Atomically write an artifact and return its path."""

    @abstractmethod
    def read_existing(self, domain: str, kind: ArtifactKind) -> Optional[bytes]:
        """Return the stored artifact, or None when it does not exist."""

    @abstractmethod
    def commit(self, message: str) -> bool:
        """Persist the run's changes. Returns True when something was recorded."""

    def remaining_validity_days(self, domain: str) -> Optional[int]:
        """Days left on the stored leaf certificate, or None if there is none usable."""
        pem = self.read_existing(domain, ArtifactKind.CERT)
        if pem is None:
            return None
        try:
            return days_until_expiry(parse_expiry(pem))
        except ValueError as exc:
            logger.warning("Stored certificate for %s is unreadable (%s); treating as absent", domain, exc)
            return None

    def entry(self, domain: str) -> CertStoreEntry:
        return CertStoreEntry(
            domain=domain,
            key_path=str(self.path_for(domain, ArtifactKind.KEY)),
            csr_path=str(self.path_for(domain, ArtifactKind.CSR)),
            cert_path=str(self.path_for(domain, ArtifactKind.CERT)),
            fullchain_path=str(self.path_for(domain, ArtifactKind.FULLCHAIN)),
            chain_path=str(self.path_for(domain, ArtifactKind.CHAIN)),
        )


# ─── Filesystem implementation ────────────────────────────────────────────────


class FilesystemCertificateStore(CertificateStore):
    def __init__(self, root: Union[str, Path], git: Optional[GitRepository] = None) -> None:
        self.root = Path(root)
        self.git = git

    def path_for(self, domain: str, kind: ArtifactKind) -> Path:
        # "*.example.com" is kept as "wildcard.example.com" on disk
        name = domain.replace("*.", "wildcard.", 1)
        return self.root / name / f"{name}{kind.suffix}"

    def write_artifact(self, domain: str, kind: ArtifactKind, data: Union[bytes, str]) -> Path:
        if isinstance(data, str):
            data = data.encode()
        path = self.path_for(domain, kind)
        atomic_write_bytes(path, data, mode=0o600 if kind in _PRIVATE_KINDS else None)
        logger.debug("Wrote %s for %s to %s", kind.value, domain, path)
        return path

    def read_existing(self, domain: str, kind: ArtifactKind) -> Optional[bytes]:
        path = self.path_for(domain, kind)
        if path.exists():
            return path.read_bytes()
        return None

    def commit(self, message: str) -> bool:
        if self.git is None:
            logger.info("Certificate store is not a git repository; nothing to commit")
            return False
        return self.git.commit_and_push(message)


def make_store(root: Optional[str] = None) -> FilesystemCertificateStore:
    """Build the store from settings (mirrors make_client())."""
    from config import settings  # late import to avoid circular dependency

    root = root or settings.CERT_STORE_PATH
    git = None
    if settings.CERT_STORE_GIT_URL or (Path(root) / ".git").exists():
        git = GitRepository(
            root,
            url=settings.CERT_STORE_GIT_URL,
            user_name=settings.GIT_USER_NAME,
            user_email=settings.GIT_USER_EMAIL,
        )
    return FilesystemCertificateStore(root, git=git)
