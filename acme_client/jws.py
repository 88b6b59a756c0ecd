"""
Account key handling and JWS request signing (RFC 8555 §6.2).

josepy supplies the JWK model, the RFC 7638 thumbprint, RS256 and base64url.
The account key is the only key this module touches; domain keys and CSRs
live in acme_client/crypto.py.
"""
from __future__ import annotations

import json
from pathlib import Path

import josepy
from josepy.jwk import JWKRSA
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from storage.atomic import atomic_write_bytes

_ALG = josepy.RS256


# ─── Account key I/O ──────────────────────────────────────────────────────────


def generate_account_key(key_size: int = 2048) -> JWKRSA:
    return JWKRSA(key=rsa.generate_private_key(public_exponent=65537, key_size=key_size))


def save_account_key(jwk: JWKRSA, path: str) -> None:
    """Write the key as unencrypted PKCS#8 PEM, atomically and with mode 0600."""
    pem = jwk.key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    atomic_write_bytes(Path(path), pem, mode=0o600)


def load_account_key(path: str) -> JWKRSA:
    return JWKRSA.load(Path(path).read_bytes())


def account_key_exists(path: str) -> bool:
    return Path(path).is_file()


# ─── Key authorization ────────────────────────────────────────────────────────


def compute_jwk_thumbprint(jwk: JWKRSA) -> str:
    return b64url(jwk.public_key().thumbprint(hash_function=hashes.SHA256))


def compute_key_authorization(token: str, jwk: JWKRSA) -> str:
    """token "." base64url(thumbprint), the value the DNS-01 record is derived from."""
    return f"{token}.{compute_jwk_thumbprint(jwk)}"


# ─── JWS ──────────────────────────────────────────────────────────────────────


def sign_request(
    payload: dict | None,
    account_key: JWKRSA,
    nonce: str,
    url: str,
    account_url: str | None = None,
) -> dict:
    """
    Return the flattened JWS body for an ACME POST.

    Requests made before the account exists (newAccount) embed the public JWK;
    every later request names the account by its URL ("kid").  A payload of
    None yields the empty payload used for POST-as-GET.
    """
    protected: dict = {"alg": _ALG.name, "nonce": nonce, "url": url}
    if account_url:
        protected["kid"] = account_url
    else:
        protected["jwk"] = account_key.public_key().to_json()

    protected_b64 = b64url(json.dumps(protected).encode())
    payload_b64 = "" if payload is None else b64url(json.dumps(payload).encode())
    signature = _ALG.sign(account_key.key, f"{protected_b64}.{payload_b64}".encode())

    return {"protected": protected_b64, "payload": payload_b64, "signature": b64url(signature)}


def b64url(data: bytes) -> str:
    """Unpadded base64url, as JOSE requires."""
    return josepy.b64encode(data).decode()
