"""
challenge_requester node — POST /newOrder for the current domain, then fetch
its authorizations and collect the DNS-01 challenge data.

The challenge data is a mapping keyed by identifier FQDN; the node selects
this domain's entry by key, never by position.
"""
from __future__ import annotations

import logging
from typing import Dict

import requests
from josepy.jwk import JWKRSA

from acme_client import jws as jwslib
from acme_client.client import AcmeClient, AcmeError, make_client
from agent.errors import ChallengeRequestError
from agent.state import Challenge, DomainState, failure, transition
from dns01.providers import challenge_record_name, compute_dns_txt_value

logger = logging.getLogger(__name__)


def build_challenge_data(
    client: AcmeClient,
    order_body: dict,
    order_url: str,
    account_key: JWKRSA,
    account_url: str,
) -> Dict[str, Challenge]:
    """Return {identifier FQDN: Challenge} for every authorization of the order."""
    challenges: Dict[str, Challenge] = {}

    for auth_url in order_body.get("authorizations", []):
        authz = client.get_authorization(auth_url, account_key, account_url)
        identifier = authz.get("identifier", {}).get("value", "")
        if authz.get("wildcard"):
            identifier = f"*.{identifier}"

        dns_challenge = next(
            (c for c in authz.get("challenges", []) if c.get("type") == "dns-01"),
            None,
        )
        already_valid = authz.get("status") == "valid"
        if dns_challenge is None and not already_valid:
            raise ChallengeRequestError(f"No dns-01 challenge offered for {identifier} ({auth_url})")

        if already_valid:
            # Authorization reused from an earlier order: nothing to publish
            record_name, record_value, status = "", "", "validated"
        else:
            key_auth = jwslib.compute_key_authorization(dns_challenge["token"], account_key)
            record_name = challenge_record_name(identifier)
            record_value = compute_dns_txt_value(key_auth)
            status = "requested"

        challenges[identifier] = Challenge(
            domain=identifier,
            type="dns-01",
            record_name=record_name,
            record_value=record_value,
            status=status,
            order_url=order_url,
            finalize_url=order_body.get("finalize", ""),
            auth_url=auth_url,
            challenge_url=(dns_challenge or {}).get("url", ""),
        )

    return challenges


def challenge_requester(state: DomainState) -> dict:
    """
    csr_ready → challenge_requested, or failed (ChallengeRequestError).

    Returns updates to: status, transitions, challenge, nonce.
    """
    domain = state["fqdn"]
    account_url = state["account_url"]
    nonce = state.get("nonce")

    logger.info("Creating ACME order for %s", domain)
    try:
        account_key = jwslib.load_account_key(state["account_key_path"])
        client = make_client()
        directory = client.get_directory()
        if not nonce:
            nonce = client.get_nonce(directory)

        order_body, order_url, nonce = client.create_order(
            domains=[domain],
            account_key=account_key,
            account_url=account_url,
            nonce=nonce,
            directory=directory,
        )
        challenge_data = build_challenge_data(client, order_body, order_url, account_key, account_url)
    except ChallengeRequestError as exc:
        logger.error("%s", exc)
        return failure(exc, nonce=nonce)
    except (AcmeError, requests.RequestException, OSError, ValueError) as exc:
        err = ChallengeRequestError(f"Order for {domain} failed: {exc}")
        logger.error("%s", err)
        return failure(err, nonce=nonce)

    challenge = challenge_data.get(domain)
    if challenge is None:
        err = ChallengeRequestError(
            f"Order for {domain} has no authorization for it (got: {', '.join(challenge_data) or 'none'})"
        )
        logger.error("%s", err)
        return failure(err, nonce=nonce)

    logger.info("Order created for %s — TXT %s", domain, challenge["record_name"] or "(already valid)")
    return transition("challenge_requested", challenge=challenge, nonce=nonce)
