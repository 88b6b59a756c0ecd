"""
Wait for a published TXT record to become visible.

A poll first asks the zone's authoritative nameservers (discovered with
dnspython, or the servers PROPAGATION_NAMESERVERS names).  Once they agree,
recursive resolvers independent of the DNS provider are asked too: the
PROPAGATION_RESOLVERS, or the system resolver when none are configured.  A
record that only the provider's own servers answer for is not yet visible.

A poll succeeds only when every server answers with exactly the expected
value: a record set that carries additional values does not match.  Lookup
failures count as "not visible yet".
"""
from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence, Set

import dns.exception
import dns.resolver

logger = logging.getLogger(__name__)


class PropagationWaiter:
    def __init__(
        self,
        nameservers: Optional[Sequence[str]] = None,
        resolvers: Optional[Sequence[str]] = None,
        check_recursive: bool = True,
        poll_interval: float = 5.0,
        query_timeout: float = 5.0,
    ) -> None:
        self.nameservers = list(nameservers or [])
        self.resolvers = list(resolvers or [])
        self.check_recursive = check_recursive
        self.poll_interval = poll_interval
        self.query_timeout = query_timeout

    def wait_for(self, name: str, expected_value: str, timeout: float = 120, zone: Optional[str] = None) -> bool:
        """Poll until *name* resolves to exactly *expected_value*. False on timeout."""
        deadline = time.monotonic() + timeout
        attempt = 0
        while True:
            attempt += 1
            if self.is_visible(name, expected_value, zone):
                logger.info("TXT %s visible after %d poll(s)", name, attempt)
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("TXT %s not visible after %ss", name, timeout)
                return False
            time.sleep(min(self.poll_interval, remaining))

    def is_visible(self, name: str, expected_value: str, zone: Optional[str] = None) -> bool:
        servers = self.nameservers or self._authoritative_servers(name, zone)
        if not servers or not self._all_agree(servers, name, expected_value):
            return False
        if not self.check_recursive:
            return True
        # None = the system resolver
        recursive: List[Optional[str]] = list(self.resolvers) or [None]
        return self._all_agree(recursive, name, expected_value)

    def _all_agree(self, servers: Sequence[Optional[str]], name: str, expected_value: str) -> bool:
        for server in servers:
            observed = self._query(server, name)
            if observed != {expected_value}:
                logger.debug(
                    "TXT %s at %s: %s", name, server or "system resolver", sorted(observed) if observed else observed
                )
                return False
        return True

    def _authoritative_servers(self, name: str, zone: Optional[str]) -> List[str]:
        """Return the IPs of the zone's NS hosts, or [] when they cannot be found."""
        try:
            zone_name = zone or dns.resolver.zone_for_name(name).to_text()
            ns_answer = dns.resolver.resolve(zone_name, "NS")
        except dns.exception.DNSException as exc:
            logger.debug("NS lookup for %s failed: %s", name, exc)
            return []

        ips: List[str] = []
        for rdata in ns_answer:
            ns_name = rdata.target.to_text()
            try:
                ips.extend(a.address for a in dns.resolver.resolve(ns_name, "A"))
            except dns.exception.DNSException as exc:
                logger.debug("A lookup for nameserver %s failed: %s", ns_name, exc)
        return ips

    def _query(self, server: Optional[str], name: str) -> Optional[Set[str]]:
        """TXT strings for *name* at *server* (None = system resolver); None when the lookup fails."""
        try:
            if server is None:
                resolver = dns.resolver.Resolver()
            else:
                resolver = dns.resolver.Resolver(configure=False)
                resolver.nameservers = [server]
            resolver.lifetime = self.query_timeout
            answer = resolver.resolve(name, "TXT")
        except dns.exception.DNSException:
            return None
        # Multi-string TXT rdata is concatenated
        return {b"".join(rdata.strings).decode("ascii", errors="replace") for rdata in answer}


def make_propagation_waiter() -> PropagationWaiter:
    from config import settings  # late import to avoid circular dependency

    return PropagationWaiter(
        nameservers=settings.PROPAGATION_NAMESERVERS,
        resolvers=settings.PROPAGATION_RESOLVERS,
        check_recursive=settings.PROPAGATION_CHECK_RECURSIVE,
        poll_interval=settings.PROPAGATION_POLL_INTERVAL_SECONDS,
    )
