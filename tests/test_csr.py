"""
Unit tests for the csr_generator node (agent/nodes/csr.py).
"""
from __future__ import annotations

from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID

from acme_client.crypto import create_csr, csr_to_pem, generate_rsa_key, private_key_to_pem
from agent.errors import CsrGenerationError, KeyGenerationError
from agent.nodes.csr import csr_generator, generate_request
from storage.filesystem import ArtifactKind, FilesystemCertificateStore


@pytest.fixture()
def store(tmp_path):
    return FilesystemCertificateStore(tmp_path)


def test_creates_key_and_csr(store):
    request = generate_request("vpn.example.com", store)

    assert request["key_created"] is True
    assert request["csr_created"] is True
    assert request["key_path"].endswith("vpn.example.com/vpn.example.com.key")

    csr = x509.load_der_x509_csr(bytes.fromhex(request["csr_der_hex"]))
    assert csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "vpn.example.com"
    assert store.read_existing("vpn.example.com", ArtifactKind.CSR) is not None


def test_existing_key_is_not_overwritten(store):
    key_pem = private_key_to_pem(generate_rsa_key())
    store.write_artifact("example.com", ArtifactKind.KEY, key_pem)

    request = generate_request("example.com", store)

    assert request["key_created"] is False
    assert store.read_existing("example.com", ArtifactKind.KEY) == key_pem


def test_matching_csr_is_reused(store):
    first = generate_request("example.com", store)
    second = generate_request("example.com", store)

    assert second["csr_created"] is False
    assert second["csr_der_hex"] == first["csr_der_hex"]


def test_stale_csr_is_regenerated(store):
    key = generate_rsa_key()
    store.write_artifact("example.com", ArtifactKind.KEY, private_key_to_pem(key))
    # CSR left over from a previous key
    store.write_artifact("example.com", ArtifactKind.CSR, csr_to_pem(create_csr(generate_rsa_key(), "example.com")))

    request = generate_request("example.com", store)

    assert request["csr_created"] is True


def test_unreadable_csr_is_regenerated(store):
    store.write_artifact("example.com", ArtifactKind.CSR, b"garbage")
    assert generate_request("example.com", store)["csr_created"] is True


def test_unreadable_key_fails(store):
    store.write_artifact("example.com", ArtifactKind.KEY, b"not a key")
    with pytest.raises(KeyGenerationError):
        generate_request("example.com", store)


def test_key_write_failure(store):
    with patch.object(store, "write_artifact", side_effect=OSError("read-only file system")):
        with pytest.raises(KeyGenerationError):
            generate_request("example.com", store)


def test_csr_failure(store):
    with patch("agent.nodes.csr.create_csr", side_effect=ValueError("bad name")):
        with pytest.raises(CsrGenerationError):
            generate_request("example.com", store)


def test_node_transitions_to_csr_ready(agent_settings):
    update = csr_generator({"fqdn": "example.com", "cert_store_path": agent_settings.CERT_STORE_PATH})
    assert update["status"] == "csr_ready"
    assert update["transitions"] == ["csr_ready"]
    assert update["request"]["domain"] == "example.com"


def test_node_failure_is_domain_scoped(agent_settings):
    with patch("agent.nodes.csr.generate_request", side_effect=CsrGenerationError("disk full")):
        update = csr_generator({"fqdn": "example.com", "cert_store_path": agent_settings.CERT_STORE_PATH})
    assert update["status"] == "failed"
    assert update["error_type"] == "CsrGenerationError"
