"""
acme_account_setup node — make sure the ACME account exists before any
domain is issued.

Security note: the account key is never stored in state (which could leak
into checkpoints).  Only the key path is, and the key is loaded from disk
each time it is needed.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import requests

from acme_client import jws as jwslib
from acme_client.client import AcmeError, make_client
from agent.errors import AccountProvisioningError
from agent.state import AccountStatus, RunState, failed_result
from config import settings
from storage.filesystem import make_store

logger = logging.getLogger(__name__)


def ensure_account(account_key_path: str, contacts: List[str], directory_url: str) -> AccountStatus:
    """
    Idempotently provision the account behind *account_key_path*.

    - No key on disk: generate and save one (0600), then register.
    - Key on disk: look the account up (onlyReturnExisting).  Register it if
      the CA does not know it; add missing contacts if it does.

    The key is never rotated, and contacts are only ever added.
    Raises AccountProvisioningError on any failure.
    """
    try:
        client = make_client(directory_url)
        directory = client.get_directory()
        nonce = client.get_nonce(directory)

        if jwslib.account_key_exists(account_key_path):
            logger.info("Loading existing account key from %s", account_key_path)
            account_key = jwslib.load_account_key(account_key_path)
        else:
            logger.info("No account key found — generating new key at %s", account_key_path)
            account_key = jwslib.generate_account_key()
            jwslib.save_account_key(account_key, account_key_path)

        account_url, body, nonce = client.lookup_account(account_key, nonce, directory)

        if not account_url:
            account_url, _ = client.create_account(account_key, nonce, directory, contacts=contacts)
            if not account_url:
                raise AccountProvisioningError("CA did not return an account URL")
            logger.info("Registered new ACME account: %s", account_url)
            return AccountStatus(account_url=account_url, status="created", contacts=list(contacts))

        existing = list(body.get("contact", []))
        missing = [c for c in contacts if c not in existing]
        if not missing:
            logger.info("Using existing ACME account: %s", account_url)
            return AccountStatus(account_url=account_url, status="unchanged", contacts=existing)

        merged = existing + missing
        client.update_account(account_url, account_key, merged, nonce)
        logger.info("Added contact(s) %s to ACME account %s", ", ".join(missing), account_url)
        return AccountStatus(account_url=account_url, status="updated", contacts=merged)

    except (AcmeError, requests.RequestException, OSError, ValueError) as exc:
        raise AccountProvisioningError(f"ACME account provisioning failed: {exc}") from exc


def _due(days: Optional[int], threshold: int) -> bool:
    return days is None or days <= threshold


def acme_account_setup(state: RunState) -> dict:
    """
    Run-level node.  Skipped when no domain is due for renewal, so a run
    over current certificates makes no ACME request at all.  On failure the
    run is aborted and every domain is reported failed without being
    attempted.

    Returns updates to: account, or aborted/abort_reason/results.
    """
    domains = state.get("managed_domains", [])
    store = make_store(state["cert_store_path"])
    threshold = state["renewal_threshold_days"]
    if not any(_due(store.remaining_validity_days(d["fqdn"]), threshold) for d in domains):
        logger.info("Every managed certificate is within its validity window; skipping the account check")
        return {"account": None}

    contacts = settings.account_contacts(domains[0]["zone"] if domains else None)

    try:
        account = ensure_account(state["account_key_path"], contacts, settings.ACME_DIRECTORY_URL)
    except AccountProvisioningError as exc:
        logger.error("%s — no domain will be attempted", exc)
        return {
            "aborted": True,
            "abort_reason": str(exc),
            "results": {d["fqdn"]: failed_result(d["fqdn"], exc) for d in domains},
        }

    return {"account": account}
