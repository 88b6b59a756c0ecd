"""
ACME v2 (RFC 8555) client used by the issuance graph.

The client holds no account or nonce state of its own.  Every call takes the
nonce it should sign with and hands back the next one, so the graph nodes
decide how nonces flow between requests.

Signed requests
---------------
Every POST goes through `_post_signed`.  A `badNonce` problem is retried with
the `Replay-Nonce` the server sent along with the error; when the server sent
none, a new nonce is fetched from `newNonce`.  After `_NONCE_RETRIES` attempts
the last error is raised as `AcmeError`.

Orders and authorizations are read with POST-as-GET (empty JWS payload) when
account credentials are given, plain GET otherwise.
"""
from __future__ import annotations

from typing import Optional

from josepy.jwk import JWKRSA
import requests
import urllib3

from acme_client import jws as jwslib

_NONCE_RETRIES = 3
_JOSE = "application/jose+json"
_PEM_CHAIN = "application/pem-certificate-chain"


class AcmeError(Exception):
    """An error response (RFC 7807 problem document) from the ACME server."""

    def __init__(self, status_code: int, body: dict, new_nonce: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.new_nonce = new_nonce
        super().__init__(
            f"ACME {status_code}: {body.get('type', 'unknown')}: {body.get('detail', body)}"
        )

    @property
    def problem_type(self) -> str:
        return self.body.get("type", "")

    @property
    def is_bad_nonce(self) -> bool:
        return self.problem_type.endswith(":badNonce")


def _next_nonce(resp: requests.Response) -> str:
    return resp.headers.get("Replay-Nonce", "")


def _problem(resp: requests.Response) -> dict:
    try:
        return resp.json()
    except ValueError:
        return {"detail": resp.text}


class AcmeClient:
    """The subset of RFC 8555 a DNS-01 issuance needs."""

    user_agent = "dns01-cert-agent/0.1"

    def __init__(
        self,
        directory_url: str,
        timeout: int = 30,
        ca_bundle: str = "",
        insecure: bool = False,
    ) -> None:
        self.directory_url = directory_url
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers["User-Agent"] = self.user_agent

        if insecure:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self._session.verify = False
        elif ca_bundle:
            self._session.verify = ca_bundle

    # ── Directory & nonce ─────────────────────────────────────────────────

    def get_directory(self) -> dict:
        resp = self._session.get(self.directory_url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def get_nonce(self, directory: dict) -> str:
        """HEAD newNonce and return the Replay-Nonce header."""
        resp = self._session.head(directory["newNonce"], timeout=self.timeout)
        nonce = _next_nonce(resp)
        if not nonce:
            raise AcmeError(resp.status_code, {"detail": "newNonce response carried no Replay-Nonce"})
        return nonce

    # ── Account ───────────────────────────────────────────────────────────

    def create_account(
        self,
        account_key: JWKRSA,
        nonce: str,
        directory: dict,
        contacts: list[str] | None = None,
    ) -> tuple[str, str]:
        """Register the account, agreeing to the CA's terms. Returns (account_url, nonce)."""
        payload: dict = {"termsOfServiceAgreed": True}
        if contacts:
            payload["contact"] = list(contacts)

        resp = self._post_signed(payload, account_key, nonce, directory["newAccount"], directory=directory)
        return resp.headers.get("Location", ""), _next_nonce(resp)

    def lookup_account(
        self,
        account_key: JWKRSA,
        nonce: str,
        directory: dict,
    ) -> tuple[Optional[str], dict, str]:
        """
        Find the account bound to *account_key* without creating one.

        Returns (account_url, account_body, nonce); account_url is None when
        the CA answers accountDoesNotExist.
        """
        try:
            resp = self._post_signed(
                {"onlyReturnExisting": True}, account_key, nonce, directory["newAccount"], directory=directory
            )
        except AcmeError as exc:
            if exc.status_code == 400 and exc.problem_type.endswith(":accountDoesNotExist"):
                return None, {}, exc.new_nonce
            raise

        try:
            body = resp.json()
        except ValueError:
            body = {}
        return resp.headers.get("Location"), body, _next_nonce(resp)

    def update_account(
        self,
        account_url: str,
        account_key: JWKRSA,
        contacts: list[str],
        nonce: str,
    ) -> tuple[dict, str]:
        """Replace the account's contact list. Returns (account_body, nonce)."""
        resp = self._post_signed({"contact": list(contacts)}, account_key, nonce, account_url, account_url)
        return resp.json(), _next_nonce(resp)

    # ── Orders ────────────────────────────────────────────────────────────

    def create_order(
        self,
        domains: list[str],
        account_key: JWKRSA,
        account_url: str,
        nonce: str,
        directory: dict,
    ) -> tuple[dict, str, str]:
        """Open an order for *domains*. Returns (order_body, order_url, nonce)."""
        payload = {"identifiers": [{"type": "dns", "value": d} for d in domains]}
        resp = self._post_signed(payload, account_key, nonce, directory["newOrder"], account_url, directory=directory)
        return resp.json(), resp.headers.get("Location", ""), _next_nonce(resp)

    def get_order(
        self,
        order_url: str,
        account_key: JWKRSA | None = None,
        account_url: str | None = None,
    ) -> dict:
        return self._fetch(order_url, account_key, account_url)

    def get_authorization(
        self,
        auth_url: str,
        account_key: JWKRSA | None = None,
        account_url: str | None = None,
    ) -> dict:
        return self._fetch(auth_url, account_key, account_url)

    def respond_to_challenge(
        self,
        challenge_url: str,
        account_key: JWKRSA,
        account_url: str,
        nonce: str,
    ) -> tuple[dict, str]:
        """Ask the CA to validate the challenge (empty JSON object payload)."""
        resp = self._post_signed({}, account_key, nonce, challenge_url, account_url)
        return resp.json(), _next_nonce(resp)

    # ── Finalization & download ───────────────────────────────────────────

    def finalize_order(
        self,
        finalize_url: str,
        csr_der: bytes,
        account_key: JWKRSA,
        account_url: str,
        nonce: str,
    ) -> tuple[dict, str]:
        """Submit the DER CSR to the order's finalize URL. Returns (order_body, nonce)."""
        payload = {"csr": jwslib.b64url(csr_der)}
        resp = self._post_signed(payload, account_key, nonce, finalize_url, account_url)
        return resp.json(), _next_nonce(resp)

    def download_certificate(
        self,
        cert_url: str,
        account_key: JWKRSA,
        account_url: str,
        nonce: str,
    ) -> tuple[str, str]:
        """Returns (leaf + intermediates PEM, nonce)."""
        resp = self._post_signed(None, account_key, nonce, cert_url, account_url, accept=_PEM_CHAIN)
        return resp.text, _next_nonce(resp)

    # ── Transport ─────────────────────────────────────────────────────────

    def _fetch(self, url: str, account_key: JWKRSA | None, account_url: str | None) -> dict:
        if not (account_key and account_url):
            resp = self._session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()

        # polling callers do not carry a nonce
        directory = self.get_directory()
        resp = self._post_signed(None, account_key, self.get_nonce(directory), url, account_url, directory=directory)
        return resp.json()

    def _post_signed(
        self,
        payload: dict | None,
        account_key: JWKRSA,
        nonce: str,
        url: str,
        account_url: str | None = None,
        accept: str = "application/json",
        directory: dict | None = None,
    ) -> requests.Response:
        """POST a JWS-signed *payload* to *url*; badNonce answers are retried."""
        error: AcmeError | None = None
        for _ in range(_NONCE_RETRIES):
            if error is not None:
                if error.new_nonce:
                    nonce = error.new_nonce
                else:
                    directory = directory or self.get_directory()
                    nonce = self.get_nonce(directory)

            resp = self._session.post(
                url,
                json=jwslib.sign_request(payload, account_key, nonce, url, account_url),
                headers={"Content-Type": _JOSE, "Accept": accept},
                timeout=self.timeout,
            )
            if resp.ok:
                return resp

            error = AcmeError(resp.status_code, _problem(resp), _next_nonce(resp))
            if not error.is_bad_nonce:
                raise error

        assert error is not None
        raise error


def make_client(directory_url: str | None = None) -> AcmeClient:
    """AcmeClient for the configured directory and TLS settings."""
    from config import settings  # late import to avoid circular dependency

    return AcmeClient(
        directory_url=directory_url or settings.ACME_DIRECTORY_URL,
        ca_bundle=settings.ACME_CA_BUNDLE,
        insecure=settings.ACME_INSECURE,
    )
