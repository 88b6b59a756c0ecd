"""
LangGraph StateGraph builders for the certificate issuance agent.

Run graph topology:
  START
    → domain_loader
    → [conditional: nothing_to_do → summary_reporter]
    → acme_account_setup
    → [conditional: account failed → repository_commit
                    otherwise Send("issue_domain") once per domain]
    → issue_domain (×N, at most max_concurrency at a time)
    → repository_commit
    → summary_reporter
    → END

Per-domain graph topology (issue_domain runs one of these per domain):
  START
    → csr_generator                       init → csr_ready
    → certificate_scanner                 satisfied → END
    → challenge_requester                 → challenge_requested
    → [already_valid → certificate_retriever]
    → record_publisher                    → record_published
    → propagation_waiter                  → propagated
    → certificate_retriever               → validated   (RetryPolicy)
    → storage_manager                     → issued
    → record_cleanup                      → cleaned_up
    → END

Any step may end the domain in `failed`; failures after the record was
published still pass through record_cleanup (propagation timeouts only when
CLEANUP_ON_PROPAGATION_TIMEOUT is set).
"""
from __future__ import annotations

import logging

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from agent.nodes.account import acme_account_setup
from agent.nodes.challenge import propagation_waiter, record_cleanup, record_publisher
from agent.nodes.csr import csr_generator
from agent.nodes.finalizer import certificate_retriever
from agent.nodes.order import challenge_requester
from agent.nodes.reporter import summary_reporter
from agent.nodes.router import (
    challenge_request_router,
    csr_router,
    dispatch_domains,
    domain_loader,
    loader_router,
    propagation_router,
    publish_router,
    renewal_router,
    retrieval_router,
)
from agent.nodes.scanner import certificate_scanner
from agent.nodes.storage import repository_commit, storage_manager
from agent.state import DomainState, RunState, domain_result, failed_result, initial_state

__all__ = ["build_domain_graph", "build_graph", "initial_state", "issue_domain"]

logger = logging.getLogger(__name__)


def build_domain_graph():
    """Build and compile the per-domain issuance state machine."""
    builder = StateGraph(DomainState)

    # ── Register nodes ────────────────────────────────────────────────────
    builder.add_node("csr_generator", csr_generator)
    builder.add_node("certificate_scanner", certificate_scanner)
    builder.add_node("challenge_requester", challenge_requester)
    builder.add_node("record_publisher", record_publisher)
    builder.add_node("propagation_waiter", propagation_waiter)
    builder.add_node("certificate_retriever", certificate_retriever)
    builder.add_node("storage_manager", storage_manager)
    builder.add_node("record_cleanup", record_cleanup)

    # ── Edges ─────────────────────────────────────────────────────────────
    builder.add_edge(START, "csr_generator")
    builder.add_conditional_edges(
        "csr_generator",
        csr_router,
        {"csr_ok": "certificate_scanner", "failed": END},
    )
    builder.add_conditional_edges(
        "certificate_scanner",
        renewal_router,
        {"renewal_needed": "challenge_requester", "satisfied": END},
    )
    builder.add_conditional_edges(
        "challenge_requester",
        challenge_request_router,
        {
            "publish": "record_publisher",
            "already_valid": "certificate_retriever",
            "failed": END,
        },
    )
    builder.add_conditional_edges(
        "record_publisher",
        publish_router,
        {"published": "propagation_waiter", "failed": END},
    )
    builder.add_conditional_edges(
        "propagation_waiter",
        propagation_router,
        {
            "propagated": "certificate_retriever",
            "cleanup": "record_cleanup",
            "failed": END,
        },
    )
    builder.add_conditional_edges(
        "certificate_retriever",
        retrieval_router,
        {
            "validated": "storage_manager",
            "cleanup": "record_cleanup",
            "failed": END,
        },
    )
    # storage failures happen after publication too, so always clean up
    builder.add_edge("storage_manager", "record_cleanup")
    builder.add_edge("record_cleanup", END)

    return builder.compile()


_domain_graph = None


def issue_domain(state: DomainState) -> dict:
    """
    Run the per-domain state machine for one Send() payload.

    Any unexpected exception fails only this domain.
    Returns updates to: results (merged by FQDN).
    """
    global _domain_graph
    if _domain_graph is None:
        _domain_graph = build_domain_graph()

    fqdn = state["fqdn"]
    try:
        final = _domain_graph.invoke(state)
    except Exception as exc:
        logger.exception("Issuance of %s aborted unexpectedly", fqdn)
        return {"results": {fqdn: failed_result(fqdn, exc)}}

    result = domain_result(final)
    logger.info("%s finished: %s (%s)", fqdn, result["outcome"], " → ".join(result["transitions"]))
    return {"results": {fqdn: result}}


def build_graph(use_checkpointing: bool = False):
    """
    Build and compile the run graph.

    Args:
        use_checkpointing: If True, attach a MemorySaver for resumable runs.

    Returns:
        CompiledGraph ready to invoke / stream.  Pass
        config={"max_concurrency": N} to issue up to N domains in parallel.
    """
    builder = StateGraph(RunState)

    # ── Register nodes ────────────────────────────────────────────────────
    builder.add_node("domain_loader", domain_loader)
    builder.add_node("acme_account_setup", acme_account_setup)
    builder.add_node("issue_domain", issue_domain)
    builder.add_node("repository_commit", repository_commit)
    builder.add_node("summary_reporter", summary_reporter)

    # ── Edges ─────────────────────────────────────────────────────────────
    builder.add_edge(START, "domain_loader")
    builder.add_conditional_edges(
        "domain_loader",
        loader_router,
        {"load_ok": "acme_account_setup", "nothing_to_do": "summary_reporter"},
    )
    builder.add_conditional_edges(
        "acme_account_setup",
        dispatch_domains,
        ["issue_domain", "repository_commit"],
    )
    builder.add_edge("issue_domain", "repository_commit")
    builder.add_edge("repository_commit", "summary_reporter")
    builder.add_edge("summary_reporter", END)

    # ── Compile ───────────────────────────────────────────────────────────
    checkpointer = MemorySaver() if use_checkpointing else None
    return builder.compile(checkpointer=checkpointer)
