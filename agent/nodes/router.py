"""
Routing for both graphs.

domain_loader is a node (it loads the managed domains into run state); the
rest are routing functions used with graph.add_conditional_edges().
"""
from __future__ import annotations

import logging
from typing import List, Union

from langgraph.types import Send

from agent.errors import MalformedDomainError
from agent.registry import make_registry
from agent.state import DomainState, RunState, initial_domain_state
from config import settings
from dns01.address import AddressLookupError, publish_address_record
from dns01.providers import DnsProviderError
from storage.filesystem import make_store
from storage.git_sync import RepositorySyncError

logger = logging.getLogger(__name__)


# ─── Run graph ────────────────────────────────────────────────────────────────


def domain_loader(state: RunState) -> dict:
    """
    Sync the certificate repository and load the managed domains.

    In single-domain mode the FQDN is also registered in the list file, after
    its A record is pointed at this host when PUBLISH_A_RECORD is set.
    Returns updates to: managed_domains, or aborted/abort_reason.
    """
    single = state.get("single_fqdn")
    try:
        store = make_store(state["cert_store_path"])
        if store.git is not None:
            store.git.sync()

        registry = make_registry(single_fqdn=single, store_root=state["cert_store_path"])
        domains = registry.load()
        if single:
            if settings.PUBLISH_A_RECORD:
                publish_address_record(domains[0]["fqdn"], domains[0]["zone"])
            registry.add(single)
    except (MalformedDomainError, RepositorySyncError, AddressLookupError, DnsProviderError) as exc:
        logger.error("Cannot load managed domains: %s", exc)
        return {"aborted": True, "abort_reason": str(exc)}

    logger.info("Managing %d domain(s): %s", len(domains), ", ".join(d["fqdn"] for d in domains))
    return {"managed_domains": domains}


def loader_router(state: RunState) -> str:
    """Returns: "load_ok" | "nothing_to_do"."""
    if state.get("aborted") or not state.get("managed_domains"):
        return "nothing_to_do"
    return "load_ok"


def dispatch_domains(state: RunState) -> Union[str, List[Send]]:
    """
    Fan out one issuance unit per domain, or go straight to the report when
    the run was aborted.  Without an account every domain is current and the
    units end at the renewal gate.
    """
    if state.get("aborted"):
        return "repository_commit"
    return [Send("issue_domain", initial_domain_state(d, state)) for d in state["managed_domains"]]


# ─── Per-domain graph ─────────────────────────────────────────────────────────


def csr_router(state: DomainState) -> str:
    """Returns: "csr_ok" | "failed"."""
    return "failed" if state["status"] == "failed" else "csr_ok"


def renewal_router(state: DomainState) -> str:
    """Returns: "satisfied" | "renewal_needed"."""
    return "satisfied" if state.get("satisfied") else "renewal_needed"


def challenge_request_router(state: DomainState) -> str:
    """Returns: "failed" | "already_valid" | "publish"."""
    if state["status"] == "failed":
        return "failed"
    if not (state.get("challenge") or {}).get("record_name"):
        return "already_valid"
    return "publish"


def publish_router(state: DomainState) -> str:
    """Returns: "published" | "failed"."""
    return "failed" if state["status"] == "failed" else "published"


def propagation_router(state: DomainState) -> str:
    """
    Returns: "propagated" | "cleanup" | "failed".

    A propagation timeout leaves the record in place for inspection unless
    CLEANUP_ON_PROPAGATION_TIMEOUT is set.
    """
    if state["status"] != "failed":
        return "propagated"
    return "cleanup" if settings.CLEANUP_ON_PROPAGATION_TIMEOUT else "failed"


def retrieval_router(state: DomainState) -> str:
    """Returns: "validated" | "cleanup" | "failed"."""
    if state["status"] != "failed":
        return "validated"
    return "cleanup" if state.get("record_published") else "failed"
