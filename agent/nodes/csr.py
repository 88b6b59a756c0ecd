"""
csr_generator node — make sure the domain has a private key and a CSR.

The key at <root>/<fqdn>/<fqdn>.key is created once and never overwritten;
the CSR is regenerated only when the stored one no longer matches the key or
the domain.
"""
from __future__ import annotations

import logging

from acme_client.crypto import (
    create_csr,
    csr_matches,
    csr_to_der,
    csr_to_pem,
    generate_rsa_key,
    load_csr,
    load_private_key,
    private_key_to_pem,
)
from agent.errors import CsrGenerationError, KeyGenerationError
from agent.state import CertificateRequest, DomainState, failure, transition
from storage.filesystem import ArtifactKind, CertificateStore, make_store

logger = logging.getLogger(__name__)


def generate_request(domain: str, store: CertificateStore) -> CertificateRequest:
    key_created = False
    key_pem = store.read_existing(domain, ArtifactKind.KEY)
    if key_pem is None:
        logger.info("Generating RSA-2048 key for %s", domain)
        try:
            key = generate_rsa_key(key_size=2048)
            store.write_artifact(domain, ArtifactKind.KEY, private_key_to_pem(key))
        except (OSError, ValueError) as exc:
            raise KeyGenerationError(f"cannot create key for {domain}: {exc}") from exc
        key_created = True
    else:
        try:
            key = load_private_key(key_pem)
        except (ValueError, TypeError) as exc:
            raise KeyGenerationError(f"stored key for {domain} is unreadable: {exc}") from exc

    csr_created = False
    try:
        csr = None
        csr_pem = store.read_existing(domain, ArtifactKind.CSR)
        if csr_pem is not None:
            try:
                csr = load_csr(csr_pem)
            except ValueError:
                logger.warning("Stored CSR for %s is unreadable; regenerating", domain)
        if csr is None or not csr_matches(csr, key, domain):
            csr = create_csr(key, domain)
            store.write_artifact(domain, ArtifactKind.CSR, csr_to_pem(csr))
            csr_created = True
        else:
            logger.debug("Reusing CSR for %s", domain)
    except (OSError, ValueError, TypeError) as exc:
        raise CsrGenerationError(f"cannot create CSR for {domain}: {exc}") from exc

    return CertificateRequest(
        domain=domain,
        key_path=str(store.path_for(domain, ArtifactKind.KEY)),
        csr_path=str(store.path_for(domain, ArtifactKind.CSR)),
        csr_der_hex=csr_to_der(csr).hex(),
        key_created=key_created,
        csr_created=csr_created,
    )


def csr_generator(state: DomainState) -> dict:
    """init → csr_ready, or failed on key/CSR errors."""
    domain = state["fqdn"]
    try:
        request = generate_request(domain, make_store(state["cert_store_path"]))
    except (KeyGenerationError, CsrGenerationError) as exc:
        logger.error("%s", exc)
        return failure(exc)

    return transition("csr_ready", request=request)
