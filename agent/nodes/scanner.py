"""
certificate_scanner node — the renewal gate.

A stored certificate with more than renewal_threshold_days of validity left
marks the domain satisfied; the graph then ends without a single ACME call
or DNS change.
"""
from __future__ import annotations

import logging

from agent.state import DomainState
from storage.filesystem import make_store

logger = logging.getLogger(__name__)


def certificate_scanner(state: DomainState) -> dict:
    domain = state["fqdn"]
    threshold = state["renewal_threshold_days"]

    days = make_store(state["cert_store_path"]).remaining_validity_days(domain)
    if days is None:
        logger.info("  %s → no certificate found — will issue", domain)
        return {"remaining_days": None}

    if days > threshold:
        logger.info("  %s → %d days left — OK", domain, days)
        return {"remaining_days": days, "satisfied": True}

    logger.info("  %s → %d days left (threshold %d) — will renew", domain, days, threshold)
    return {"remaining_days": days}
