"""
State definitions for the certificate issuance graphs.

Two graphs share these types:
  - the run graph (RunState): load domains, ensure the ACME account, fan out
    one issuance unit per domain, commit the store, report;
  - the per-domain graph (DomainState): the DNS-01 issuance state machine.

Per-domain results are merged into RunState["results"] keyed by FQDN, so
parallel units never overwrite each other.

The account key itself never enters state (it would leak into checkpoints);
only its path does, and nodes load it from disk when they need it.
"""
from __future__ import annotations

import operator
from typing import Annotated, Dict, List, Literal, Optional

from typing_extensions import TypedDict

from agent.registry import Domain
from storage.filesystem import CertStoreEntry

DomainStatus = Literal[
    "init",
    "csr_ready",
    "challenge_requested",
    "record_published",
    "propagated",
    "validated",
    "issued",
    "cleaned_up",
    "failed",
]


class AccountStatus(TypedDict):
    account_url: str
    status: Literal["created", "updated", "unchanged"]
    contacts: List[str]


class CertificateRequest(TypedDict):
    domain: str
    key_path: str
    csr_path: str
    csr_der_hex: str                  # DER as hex so it can travel through state
    key_created: bool
    csr_created: bool


class Challenge(TypedDict):
    """
    DNS-01 challenge data for one identifier of an order.

    record_name/record_value are empty when the CA reported the authorization
    as already valid; nothing has to be published then.
    """
    domain: str
    type: str                         # always "dns-01"
    record_name: str
    record_value: str
    status: Literal["requested", "published", "propagated", "validated", "failed"]
    order_url: str
    finalize_url: str
    auth_url: str
    challenge_url: str


class DomainState(TypedDict):
    # ── Inputs ─────────────────────────────────────────────────────────────
    fqdn: str
    zone: str
    cert_store_path: str
    account_key_path: str
    account_url: str
    renewal_threshold_days: int

    # ── State machine ──────────────────────────────────────────────────────
    status: DomainStatus
    transitions: Annotated[List[str], operator.add]
    satisfied: bool                   # renewal gate short-circuit
    remaining_days: Optional[int]

    # ── Issuance artifacts ─────────────────────────────────────────────────
    request: Optional[CertificateRequest]
    challenge: Optional[Challenge]
    record_published: bool
    record_cleaned: bool
    full_chain_pem: Optional[str]
    artifacts: Optional[CertStoreEntry]

    # ── Failure / protocol ─────────────────────────────────────────────────
    error: Optional[str]
    error_type: Optional[str]
    nonce: Optional[str]              # last ACME Replay-Nonce


class DomainResult(TypedDict):
    fqdn: str
    outcome: Literal["satisfied", "issued", "failed"]
    status: str                       # last state machine status
    remaining_days: Optional[int]
    error: Optional[str]
    error_type: Optional[str]
    record_published: bool
    record_cleaned: bool
    transitions: List[str]
    artifacts: Optional[CertStoreEntry]


def merge_results(left: Dict[str, DomainResult], right: Dict[str, DomainResult]) -> Dict[str, DomainResult]:
    return {**(left or {}), **(right or {})}


class RunState(TypedDict):
    # ── Configuration ──────────────────────────────────────────────────────
    single_fqdn: Optional[str]
    cert_store_path: str
    account_key_path: str
    renewal_threshold_days: int

    # ── Loaded domains / account ───────────────────────────────────────────
    managed_domains: List[Domain]
    account: Optional[AccountStatus]

    # ── Outcome ────────────────────────────────────────────────────────────
    results: Annotated[Dict[str, DomainResult], merge_results]
    aborted: bool
    abort_reason: Optional[str]
    committed: bool
    commit_error: Optional[str]


# ─── Helpers ──────────────────────────────────────────────────────────────────


def transition(status: DomainStatus, **updates) -> dict:
    """State update moving the domain to *status* and recording the step."""
    return {"status": status, "transitions": [status], **updates}


def failure(exc: BaseException, **updates) -> dict:
    """State update for a domain-fatal error."""
    return transition("failed", error=str(exc), error_type=type(exc).__name__, **updates)


def initial_domain_state(domain: Domain, run_state: RunState) -> DomainState:
    account = run_state.get("account") or {}
    return {
        "fqdn": domain["fqdn"],
        "zone": domain["zone"],
        "cert_store_path": run_state["cert_store_path"],
        "account_key_path": run_state["account_key_path"],
        "account_url": account.get("account_url", ""),
        "renewal_threshold_days": run_state["renewal_threshold_days"],
        "status": "init",
        "transitions": ["init"],
        "satisfied": False,
        "remaining_days": None,
        "request": None,
        "challenge": None,
        "record_published": False,
        "record_cleaned": False,
        "full_chain_pem": None,
        "artifacts": None,
        "error": None,
        "error_type": None,
        "nonce": None,
    }


def domain_result(state: DomainState) -> DomainResult:
    if state.get("satisfied"):
        outcome = "satisfied"
    elif state.get("status") in ("issued", "cleaned_up"):
        outcome = "issued"
    else:
        outcome = "failed"
    return {
        "fqdn": state["fqdn"],
        "outcome": outcome,
        "status": state.get("status", "init"),
        "remaining_days": state.get("remaining_days"),
        "error": state.get("error"),
        "error_type": state.get("error_type"),
        "record_published": state.get("record_published", False),
        "record_cleaned": state.get("record_cleaned", False),
        "transitions": list(state.get("transitions", [])),
        "artifacts": state.get("artifacts"),
    }


def failed_result(fqdn: str, exc: BaseException) -> DomainResult:
    """Result for a domain that never reached its own state machine."""
    return {
        "fqdn": fqdn,
        "outcome": "failed",
        "status": "failed",
        "remaining_days": None,
        "error": str(exc),
        "error_type": type(exc).__name__,
        "record_published": False,
        "record_cleaned": False,
        "transitions": ["init", "failed"],
        "artifacts": None,
    }


def initial_state(
    cert_store_path: str,
    account_key_path: str,
    renewal_threshold_days: int = 60,
    single_fqdn: Optional[str] = None,
) -> RunState:
    """Build the initial RunState for a fresh run."""
    return {
        "single_fqdn": single_fqdn,
        "cert_store_path": cert_store_path,
        "account_key_path": account_key_path,
        "renewal_threshold_days": renewal_threshold_days,
        "managed_domains": [],
        "account": None,
        "results": {},
        "aborted": False,
        "abort_reason": None,
        "committed": False,
        "commit_error": None,
    }
