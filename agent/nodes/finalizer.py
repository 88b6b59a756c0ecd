"""
certificate_retriever node — have the CA validate the challenge, finalize
the order and download the certificate chain.

Each attempt advances the order as far as it can and raises while the CA is
still working; RetryPolicy repeats attempts (12 × 10 s by default).
"""
from __future__ import annotations

import logging

from acme_client import jws as jwslib
from acme_client.client import AcmeError, make_client
from agent.retry import RetryExhaustedError, RetryPolicy
from agent.state import DomainState, failure, transition
from config import settings

logger = logging.getLogger(__name__)


class NotReadyError(Exception):
    """The CA has not finished this step yet."""


def certificate_retriever(state: DomainState) -> dict:
    """
    propagated (or challenge_requested when no record was needed) → validated,
    or failed (RetryExhaustedError).

    Returns updates to: status, transitions, challenge, full_chain_pem, nonce.
    """
    domain = state["fqdn"]
    challenge = state["challenge"]
    account_url = state["account_url"]
    csr_der = bytes.fromhex(state["request"]["csr_der_hex"])
    nonce = state.get("nonce") or ""

    try:
        account_key = jwslib.load_account_key(state["account_key_path"])
    except (OSError, ValueError) as exc:
        logger.error("Cannot load account key for %s: %s", domain, exc)
        return failure(exc)
    client = make_client()
    responded = challenge["status"] == "validated"

    def _fresh_nonce() -> str:
        return nonce or client.get_nonce(client.get_directory())

    def _attempt() -> str:
        nonlocal nonce, responded

        authz = client.get_authorization(challenge["auth_url"], account_key, account_url)
        authz_status = authz.get("status")
        if authz_status == "pending":
            if not responded:
                logger.info("Triggering CA verification for %s", domain)
                _, nonce = client.respond_to_challenge(
                    challenge["challenge_url"], account_key, account_url, _fresh_nonce()
                )
                responded = True
            raise NotReadyError(f"authorization for {domain} is pending")
        if authz_status != "valid":
            raise AcmeError(0, {"type": "invalid", "detail": f"authorization for {domain} is {authz_status}"})

        order = client.get_order(challenge["order_url"], account_key, account_url)
        order_status = order.get("status")
        if order_status == "ready":
            logger.info("Finalizing order for %s — submitting CSR", domain)
            order, nonce = client.finalize_order(
                challenge["finalize_url"], csr_der, account_key, account_url, _fresh_nonce()
            )
            order_status = order.get("status")
        if order_status in ("pending", "ready", "processing"):
            raise NotReadyError(f"order for {domain} is {order_status}")
        if order_status != "valid" or not order.get("certificate"):
            raise AcmeError(0, {"type": "invalid", "detail": f"order for {domain} is {order_status}"})

        full_chain, nonce = client.download_certificate(
            order["certificate"], account_key, account_url, _fresh_nonce()
        )
        return full_chain

    policy = RetryPolicy(max_attempts=settings.RETRIEVE_MAX_ATTEMPTS, delay=settings.RETRIEVE_DELAY_SECONDS)
    try:
        full_chain_pem = policy.execute(_attempt)
    except RetryExhaustedError as exc:
        logger.error("Certificate retrieval for %s failed: %s", domain, exc)
        return failure(exc, nonce=nonce, challenge={**challenge, "status": "failed"})

    logger.info("Downloaded %d bytes of PEM for %s", len(full_chain_pem), domain)
    return transition(
        "validated",
        full_chain_pem=full_chain_pem,
        nonce=nonce,
        challenge={**challenge, "status": "validated"},
    )
