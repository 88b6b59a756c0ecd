"""
Unit tests for failure scenarios in the ACME protocol layer.

These tests cover edge cases and error conditions: invalid CSRs, nonce retry
exhaustion, network timeouts, invalid directory URLs and malformed bodies.

Run with:  pytest tests/test_unit_failure_scenarios.py -v
"""
from __future__ import annotations

import pytest
import requests
import responses as resp_lib

from acme_client.client import AcmeClient, AcmeError, make_client
from acme_client.crypto import create_csr, csr_to_der, generate_rsa_key


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def domain_key():
    return generate_rsa_key(key_size=2048)


FAKE_DIRECTORY = {
    "newNonce": "https://acme.test/newNonce",
    "newAccount": "https://acme.test/newAccount",
    "newOrder": "https://acme.test/newOrder",
    "keyChange": "https://acme.test/keyChange",
}

FAKE_NONCE = "testnonce12345"


# ─── Invalid CSR (server rejects with badCSR) ────────────────────────────────

@resp_lib.activate
def test_invalid_csr_rejected_by_server(account_key, domain_key):
    """finalize_order surfaces a 400 badCSR as AcmeError."""
    csr_der = csr_to_der(create_csr(domain_key, "example.com"))

    resp_lib.add(
        resp_lib.POST,
        "https://acme.test/finalize/1",
        json={
            "type": "urn:ietf:params:acme:error:badCSR",
            "detail": "CSR does not match order identifiers",
        },
        status=400,
        headers={"Replay-Nonce": FAKE_NONCE},
    )

    client = AcmeClient("https://acme.test/dir")
    with pytest.raises(AcmeError) as exc_info:
        client.finalize_order(
            "https://acme.test/finalize/1",
            csr_der,
            account_key,
            "https://acme.test/acct/1",
            FAKE_NONCE,
        )
    assert exc_info.value.status_code == 400
    assert "badCSR" in exc_info.value.problem_type
    assert exc_info.value.new_nonce == FAKE_NONCE


# ─── Expired nonce: auto-retry succeeds ──────────────────────────────────────

@resp_lib.activate
def test_bad_nonce_retries_and_succeeds(account_key):
    """
    First POST returns badNonce with a fresh nonce in Replay-Nonce.
    The client retries with it and succeeds: exactly 2 POST calls.
    """
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"type": "urn:ietf:params:acme:error:badNonce", "detail": "nonce expired"},
        status=400,
        headers={"Replay-Nonce": "freshnonce001"},
    )
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"status": "valid"},
        status=201,
        headers={"Replay-Nonce": "freshnonce002", "Location": "https://acme.test/acct/1"},
    )

    client = AcmeClient("https://acme.test/dir")
    account_url, new_nonce = client.create_account(account_key, FAKE_NONCE, FAKE_DIRECTORY)

    assert account_url == "https://acme.test/acct/1"
    assert new_nonce == "freshnonce002"
    assert len(resp_lib.calls) == 2


@resp_lib.activate
def test_bad_nonce_without_header_fetches_new_nonce(account_key):
    """A badNonce without Replay-Nonce falls back to HEAD newNonce."""
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newOrder"],
        json={"type": "urn:ietf:params:acme:error:badNonce", "detail": "nonce expired"},
        status=400,
    )
    resp_lib.add(resp_lib.HEAD, FAKE_DIRECTORY["newNonce"], headers={"Replay-Nonce": "headnonce"})
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newOrder"],
        json={"status": "pending", "authorizations": []},
        status=201,
        headers={"Replay-Nonce": "after", "Location": "https://acme.test/order/9"},
    )

    client = AcmeClient("https://acme.test/dir")
    _, order_url, nonce = client.create_order(
        ["example.com"], account_key, "https://acme.test/acct/1", FAKE_NONCE, FAKE_DIRECTORY
    )
    assert order_url == "https://acme.test/order/9"
    assert nonce == "after"
    assert [c.request.method for c in resp_lib.calls] == ["POST", "HEAD", "POST"]


# ─── Expired nonce: retries exhausted ────────────────────────────────────────

@resp_lib.activate
def test_bad_nonce_exhausts_retries(account_key):
    """All three attempts return badNonce; the last one is raised."""
    for i in range(3):
        resp_lib.add(
            resp_lib.POST,
            FAKE_DIRECTORY["newAccount"],
            json={"type": "urn:ietf:params:acme:error:badNonce", "detail": "nonce expired"},
            status=400,
            headers={"Replay-Nonce": f"nonce{i}"},
        )

    client = AcmeClient("https://acme.test/dir")
    with pytest.raises(AcmeError) as exc_info:
        client.create_account(account_key, FAKE_NONCE, FAKE_DIRECTORY)

    assert exc_info.value.status_code == 400
    assert "badNonce" in exc_info.value.problem_type
    assert len(resp_lib.calls) == 3


# ─── Network failures ────────────────────────────────────────────────────────

@resp_lib.activate
def test_network_timeout_on_directory_fetch():
    resp_lib.add(
        resp_lib.GET,
        "https://acme.test/dir",
        body=requests.exceptions.ConnectTimeout("Connection timed out"),
    )

    client = AcmeClient("https://acme.test/dir")
    with pytest.raises(requests.exceptions.ConnectTimeout):
        client.get_directory()


@resp_lib.activate
def test_invalid_directory_url_connection_error():
    resp_lib.add(
        resp_lib.GET,
        "https://invalid.nonexistent/dir",
        body=requests.exceptions.ConnectionError("Failed to resolve hostname"),
    )

    client = AcmeClient("https://invalid.nonexistent/dir")
    with pytest.raises(requests.exceptions.ConnectionError):
        client.get_directory()


@resp_lib.activate
def test_invalid_directory_url_returns_404():
    resp_lib.add(resp_lib.GET, "https://acme.test/bad-dir", body="Not Found", status=404)

    client = AcmeClient("https://acme.test/bad-dir")
    with pytest.raises(requests.exceptions.HTTPError):
        client.get_directory()


# ─── Malformed JSON body (200 OK but invalid JSON) ───────────────────────────

@resp_lib.activate
def test_finalize_order_malformed_json_response(account_key, domain_key):
    """resp.json() on a non-JSON 200 body raises a ValueError subclass."""
    csr_der = csr_to_der(create_csr(domain_key, "example.com"))

    resp_lib.add(
        resp_lib.POST,
        "https://acme.test/finalize/1",
        body="not json",
        status=200,
        headers={"Replay-Nonce": FAKE_NONCE},
    )

    client = AcmeClient("https://acme.test/dir")
    with pytest.raises(ValueError):
        client.finalize_order(
            "https://acme.test/finalize/1",
            csr_der,
            account_key,
            "https://acme.test/acct/1",
            FAKE_NONCE,
        )


# ─── Client factory ──────────────────────────────────────────────────────────

def test_make_client_uses_settings(agent_settings):
    agent_settings.ACME_CA_BUNDLE, original = "/etc/ssl/test-ca.pem", agent_settings.ACME_CA_BUNDLE
    try:
        client = make_client()
    finally:
        agent_settings.ACME_CA_BUNDLE = original
    assert client.directory_url == "https://acme.test/directory"
    assert client._session.verify == "/etc/ssl/test-ca.pem"


def test_make_client_explicit_directory(agent_settings):
    assert make_client("https://other.test/dir").directory_url == "https://other.test/dir"
