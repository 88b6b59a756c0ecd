"""
record_publisher, propagation_waiter and record_cleanup nodes.

record_publisher   — creates the _acme-challenge TXT record in the domain's zone.
propagation_waiter — waits until the zone's nameservers serve exactly that value.
record_cleanup     — deletes the record again, on success and on failure.

All three are in one file because they share the DNS provider lifecycle.
"""
from __future__ import annotations

import logging

from agent.errors import PropagationTimeoutError
from agent.state import DomainState, failure, transition
from config import settings
from dns01.propagation import make_propagation_waiter
from dns01.providers import DnsProviderError, make_dns_provider

logger = logging.getLogger(__name__)

# Raised while building a provider from incomplete settings or a missing SDK
_PROVIDER_ERRORS = (DnsProviderError, ValueError, ImportError)


# ─── record_publisher ─────────────────────────────────────────────────────────


def record_publisher(state: DomainState) -> dict:
    """challenge_requested → record_published, or failed on provider errors."""
    challenge = state["challenge"]
    try:
        make_dns_provider().create(state["zone"], challenge["record_name"], challenge["record_value"])
    except _PROVIDER_ERRORS as exc:
        logger.error("Creating TXT %s failed: %s", challenge["record_name"], exc)
        return failure(exc, challenge={**challenge, "status": "failed"})

    logger.info("Created TXT %s in zone %s", challenge["record_name"], state["zone"])
    return transition(
        "record_published",
        record_published=True,
        challenge={**challenge, "status": "published"},
    )


# ─── propagation_waiter ───────────────────────────────────────────────────────


def propagation_waiter(state: DomainState) -> dict:
    """record_published → propagated, or failed (PropagationTimeoutError)."""
    challenge = state["challenge"]
    timeout = settings.PROPAGATION_TIMEOUT_SECONDS

    logger.info("Waiting up to %ds for TXT %s to propagate", timeout, challenge["record_name"])
    visible = make_propagation_waiter().wait_for(
        challenge["record_name"], challenge["record_value"], timeout=timeout, zone=state["zone"]
    )
    if not visible:
        exc = PropagationTimeoutError(
            f"TXT {challenge['record_name']} not visible with the expected value after {timeout}s"
        )
        logger.error("%s", exc)
        return failure(exc, challenge={**challenge, "status": "failed"})

    return transition("propagated", challenge={**challenge, "status": "propagated"})


# ─── record_cleanup ───────────────────────────────────────────────────────────


def record_cleanup(state: DomainState) -> dict:
    """
    Best-effort delete of the published record.

    issued → cleaned_up.  A failed domain stays failed; only record_cleaned
    changes.  A delete error is logged and never fails the domain.
    """
    challenge = state.get("challenge") or {}
    cleaned = state.get("record_cleaned", False)

    if state.get("record_published") and not cleaned:
        try:
            make_dns_provider().delete(state["zone"], challenge["record_name"], challenge["record_value"])
            cleaned = True
            logger.info("Deleted TXT %s", challenge["record_name"])
        except _PROVIDER_ERRORS as exc:
            logger.warning("Failed to delete TXT %s: %s", challenge.get("record_name"), exc)

    if state.get("status") == "issued" and (cleaned or not state.get("record_published")):
        return transition("cleaned_up", record_cleaned=cleaned)
    return {"record_cleaned": cleaned}
