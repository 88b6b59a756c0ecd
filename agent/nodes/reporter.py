"""
summary_reporter node — one structured event per domain plus a printed
summary table.
"""
from __future__ import annotations

import structlog

from agent.state import RunState

log = structlog.get_logger(__name__)


def summary_reporter(state: RunState) -> dict:
    results = state.get("results") or {}
    order = [d["fqdn"] for d in state.get("managed_domains", [])]
    order += [f for f in results if f not in order]

    if state.get("aborted"):
        log.error("run_aborted", reason=state.get("abort_reason"))

    for fqdn in order:
        result = results.get(fqdn)
        if result is None:
            continue
        log.info(
            "domain_result",
            domain=fqdn,
            outcome=result["outcome"],
            status=result["status"],
            remaining_days=result["remaining_days"],
            error_type=result["error_type"],
            error=result["error"],
            record_published=result["record_published"],
            record_cleaned=result["record_cleaned"],
        )

    if state.get("commit_error"):
        log.error("repository_commit_failed", error=state["commit_error"])

    lines = [f"{'Domain':<40} {'Outcome':<10} {'Days':>5}  Detail"]
    for fqdn in order:
        result = results.get(fqdn)
        if result is None:
            continue
        days = "" if result["remaining_days"] is None else str(result["remaining_days"])
        detail = f"{result['error_type']}: {result['error']}" if result["error_type"] else " → ".join(result["transitions"])
        lines.append(f"{fqdn:<40} {result['outcome']:<10} {days:>5}  {detail}")
    if not results:
        lines.append(f"(no domains processed{': ' + state['abort_reason'] if state.get('abort_reason') else ''})")

    print(f"\n{'='*50}\nCertificate Issuance Summary\n{'='*50}")
    print("\n".join(lines))
    print("=" * 50)

    return {}
