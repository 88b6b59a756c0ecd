"""
Managed domain registry.

The configured set lives in a flat list file (one FQDN per line, blank lines
ignored) at the root of the certificate store.  Single-domain mode works on
one FQDN given on the command line and can register it in the list.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Union

from typing_extensions import TypedDict

from agent.errors import MalformedDomainError
from dns01.publicsuffix import PublicSuffixList
from storage.atomic import atomic_write_text

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


class Domain(TypedDict):
    fqdn: str
    zone: str                      # registrable domain; always a suffix of fqdn
    subdomain_labels: List[str]


def normalize_fqdn(raw: str) -> str:
    fqdn = raw.strip().lower()
    if fqdn.endswith("."):
        fqdn = fqdn[:-1]
    if fqdn and not fqdn.isascii():
        try:
            fqdn = fqdn.encode("idna").decode("ascii")
        except UnicodeError as exc:
            raise MalformedDomainError(f"{raw.strip()!r} is not a valid IDN: {exc}") from exc
    if not fqdn:
        raise MalformedDomainError("empty domain entry")
    if len(fqdn) > 253:
        raise MalformedDomainError(f"{fqdn!r} is longer than 253 characters")

    labels = fqdn.split(".")
    if labels[0] == "*":
        labels = labels[1:]
    if len(labels) < 2 or not all(_LABEL_RE.match(label) for label in labels):
        raise MalformedDomainError(f"{raw.strip()!r} is not a valid FQDN")
    return fqdn


class DomainRegistry:
    def __init__(
        self,
        list_file: Union[str, Path, None] = None,
        single_fqdn: Optional[str] = None,
        suffix_list: Optional[PublicSuffixList] = None,
    ) -> None:
        if list_file is None and single_fqdn is None:
            raise ValueError("DomainRegistry needs a list file or a single FQDN")
        self.list_file = Path(list_file) if list_file is not None else None
        self.single_fqdn = single_fqdn
        self.suffix_list = suffix_list
        self._warned_fallback = False

    def load(self) -> List[Domain]:
        """Return the managed domains in file order, without duplicates."""
        if self.single_fqdn is not None:
            return [self.parse(self.single_fqdn)]

        assert self.list_file is not None
        try:
            lines = self.list_file.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise MalformedDomainError(f"cannot read domain list {self.list_file}: {exc}") from exc

        domains: List[Domain] = []
        seen: set[str] = set()
        for line in lines:
            if not line.strip():
                continue
            domain = self.parse(line)
            if domain["fqdn"] in seen:
                logger.debug("Skipping duplicate domain %s", domain["fqdn"])
                continue
            seen.add(domain["fqdn"])
            domains.append(domain)

        logger.info("Loaded %d domain(s) from %s", len(domains), self.list_file)
        return domains

    def parse(self, raw: str) -> Domain:
        fqdn = normalize_fqdn(raw)
        bare = fqdn[2:] if fqdn.startswith("*.") else fqdn

        if self.suffix_list is not None:
            try:
                labels, zone = self.suffix_list.split(bare)
            except ValueError as exc:
                raise MalformedDomainError(str(exc)) from exc
        else:
            if not self._warned_fallback:
                logger.warning(
                    "No public suffix list available; using the last two labels as the zone. "
                    "Domains under multi-level suffixes such as co.uk will get the wrong zone."
                )
                self._warned_fallback = True
            parts = bare.split(".")
            labels, zone = parts[:-2], ".".join(parts[-2:])

        if bare != zone and not bare.endswith("." + zone):
            raise MalformedDomainError(f"zone {zone} is not a suffix of {fqdn}")
        return Domain(fqdn=fqdn, zone=zone, subdomain_labels=labels)

    def add(self, fqdn: str) -> bool:
        """Append *fqdn* to the list file unless it is already listed. True when added."""
        if self.list_file is None:
            raise ValueError("no domain list file configured")
        fqdn = normalize_fqdn(fqdn)

        existing = ""
        if self.list_file.exists():
            existing = self.list_file.read_text(encoding="utf-8")
        if fqdn in (line.strip() for line in existing.splitlines()):
            return False

        if existing and not existing.endswith("\n"):
            existing += "\n"
        atomic_write_text(self.list_file, f"{existing}{fqdn}\n")
        logger.info("Registered %s in %s", fqdn, self.list_file)
        return True


def make_registry(single_fqdn: Optional[str] = None, store_root: Optional[str] = None) -> DomainRegistry:
    """Build a registry for the store at *store_root* (default CERT_STORE_PATH)."""
    from config import settings  # late import to avoid circular dependency

    list_file = Path(settings.DOMAIN_LIST_FILE)
    if not list_file.is_absolute():
        list_file = Path(store_root or settings.CERT_STORE_PATH) / list_file

    suffix_list = PublicSuffixList.load(settings.PUBLIC_SUFFIX_LIST_PATH, settings.PUBLIC_SUFFIX_LIST_URL)
    return DomainRegistry(list_file=list_file, single_fqdn=single_fqdn, suffix_list=suffix_list)
