"""
Public suffix list lookups for zone derivation.

Matching is done by the publicsuffixlist package, which applies the normal,
wildcard and exception rules of https://publicsuffix.org/list/ and matches
IDN rules against punycode names.  This module adds the on-disk cache kept
fresh from PUBLIC_SUFFIX_LIST_URL and the split into subdomain labels and
registrable domain (the DNS zone the challenge record is published in).
"""
from __future__ import annotations

import io
import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

import publicsuffixlist
import requests

from storage.atomic import atomic_write_bytes

logger = logging.getLogger(__name__)

MAX_AGE_SECONDS = 7 * 24 * 3600


class PublicSuffixList:
    def __init__(self, psl: Optional[publicsuffixlist.PublicSuffixList] = None) -> None:
        # None = the copy of the list shipped with publicsuffixlist
        self._psl = psl if psl is not None else publicsuffixlist.PublicSuffixList(accept_unknown=True)

    @classmethod
    def from_text(cls, text: str) -> "PublicSuffixList":
        source = io.BytesIO(text.encode("utf-8"))
        return cls(publicsuffixlist.PublicSuffixList(source, accept_unknown=True))

    @classmethod
    def load(cls, path: str, url: str = "", max_age: float = MAX_AGE_SECONDS) -> "PublicSuffixList":
        """
        Load the list from *path*, refreshing it from *url* when the cached copy
        is missing or stale.  Without a usable cache the list bundled with
        publicsuffixlist is used.
        """
        cache = Path(path)
        stale = not cache.exists() or time.time() - cache.stat().st_mtime > max_age
        if stale and url:
            try:
                resp = requests.get(url, timeout=30)
                resp.raise_for_status()
                atomic_write_bytes(cache, resp.content)
                logger.info("Fetched public suffix list from %s", url)
            except (requests.RequestException, OSError) as exc:
                logger.warning("Unable to refresh public suffix list from %s: %s", url, exc)

        if not cache.exists() or cache.stat().st_size == 0:
            logger.info("No cached public suffix list at %s; using the bundled copy", cache)
            return cls()
        with cache.open("rb") as source:
            return cls(publicsuffixlist.PublicSuffixList(source, accept_unknown=True))

    def public_suffix(self, fqdn: str) -> str:
        return self._psl.publicsuffix(fqdn.lower())

    def split(self, fqdn: str) -> Tuple[List[str], str]:
        """
        Return (subdomain_labels, registrable_domain).

        Raises ValueError when *fqdn* is itself a public suffix.
        """
        fqdn = fqdn.lower()
        registrable = self._psl.privatesuffix(fqdn)
        if registrable is None:
            raise ValueError(f"{fqdn} is a public suffix, not a registrable domain")
        prefix = fqdn[: -len(registrable)].rstrip(".")
        return (prefix.split(".") if prefix else []), registrable
