"""
storage_manager and repository_commit nodes.

storage_manager   — splits the downloaded chain and writes leaf / chain /
                    fullchain into the certificate store.
repository_commit — one commit (and push) for the whole run, only when at
                    least one domain was issued.
"""
from __future__ import annotations

import logging

from acme_client.crypto import days_until_expiry, parse_expiry, split_pem_chain
from agent.state import DomainState, RunState, failure, transition
from storage.filesystem import ArtifactKind, make_store
from storage.git_sync import RepositorySyncError

logger = logging.getLogger(__name__)


def storage_manager(state: DomainState) -> dict:
    """validated → issued, or failed when the artifacts cannot be written."""
    domain = state["fqdn"]
    full_chain_pem = state.get("full_chain_pem") or ""
    store = make_store(state["cert_store_path"])

    cert_pem, chain_pem = split_pem_chain(full_chain_pem)
    try:
        remaining = days_until_expiry(parse_expiry(cert_pem.encode()))
        store.write_artifact(domain, ArtifactKind.CERT, cert_pem)
        store.write_artifact(domain, ArtifactKind.CHAIN, chain_pem)
        store.write_artifact(domain, ArtifactKind.FULLCHAIN, full_chain_pem)
    except (OSError, ValueError) as exc:
        logger.error("storage_manager: failed to write certificate files for %s: %s", domain, exc)
        return failure(exc)

    logger.info("Stored certificate for %s (%d days valid)", domain, remaining)
    return transition("issued", remaining_days=remaining, artifacts=store.entry(domain))


def repository_commit(state: RunState) -> dict:
    """Commit the store once after every domain is terminal."""
    issued = sorted(f for f, r in (state.get("results") or {}).items() if r["outcome"] == "issued")
    if not issued:
        logger.info("No certificate issued this run — skipping repository commit")
        return {"committed": False}

    message = f"Certificates issued for {', '.join(issued)}"
    try:
        committed = make_store(state["cert_store_path"]).commit(message)
    except RepositorySyncError as exc:
        logger.error("Repository commit failed: %s", exc)
        return {"committed": False, "commit_error": str(exc)}

    return {"committed": committed}
