"""
Unit tests for config.Settings.

Each test builds its own Settings from explicit keyword arguments (and
monkeypatched environment variables) so the module-level singleton is left
untouched.
"""
from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from config import Settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_letsencrypt_preset():
    assert _settings().ACME_DIRECTORY_URL == "https://acme-v02.api.letsencrypt.org/directory"


def test_staging_preset():
    settings = _settings(CA_PROVIDER="letsencrypt_staging")
    assert settings.ACME_DIRECTORY_URL == "https://acme-staging-v02.api.letsencrypt.org/directory"


def test_custom_directory_required():
    with pytest.raises(ValidationError):
        _settings(CA_PROVIDER="custom")
    assert _settings(CA_PROVIDER="custom", ACME_DIRECTORY_URL="https://ca.test/dir").ACME_DIRECTORY_URL == (
        "https://ca.test/dir"
    )


def test_account_key_path_derives_from_store(tmp_path):
    settings = _settings(CERT_STORE_PATH=str(tmp_path))
    assert settings.ACCOUNT_KEY_PATH == os.path.join(str(tmp_path), "le-account.key")


def test_suffix_list_cache_lives_outside_the_store(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    store = tmp_path / "store"
    settings = _settings(CERT_STORE_PATH=str(store))

    assert settings.PUBLIC_SUFFIX_LIST_PATH == os.path.join(
        str(tmp_path / "cache"), "dns01-cert-agent", "public_suffix_list.dat"
    )
    assert os.path.commonpath([settings.PUBLIC_SUFFIX_LIST_PATH, str(store)]) != str(store)


def test_suffix_list_cache_defaults_to_home_cache(monkeypatch):
    monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
    settings = _settings()
    assert settings.PUBLIC_SUFFIX_LIST_PATH == os.path.expanduser(
        os.path.join("~", ".cache", "dns01-cert-agent", "public_suffix_list.dat")
    )


def test_store_path_expands_home():
    assert not _settings(CERT_STORE_PATH="~/certs").CERT_STORE_PATH.startswith("~")


def test_nameservers_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("PROPAGATION_NAMESERVERS", "1.1.1.1, 8.8.8.8")
    assert _settings().PROPAGATION_NAMESERVERS == ["1.1.1.1", "8.8.8.8"]


def test_nameservers_from_json_env(monkeypatch):
    monkeypatch.setenv("PROPAGATION_NAMESERVERS", '["9.9.9.9"]')
    assert _settings().PROPAGATION_NAMESERVERS == ["9.9.9.9"]


def test_recursive_resolvers_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("PROPAGATION_RESOLVERS", "1.1.1.1,9.9.9.9")
    settings = _settings()
    assert settings.PROPAGATION_RESOLVERS == ["1.1.1.1", "9.9.9.9"]
    assert settings.PROPAGATION_CHECK_RECURSIVE is True


def test_address_record_is_opt_in():
    settings = _settings()
    assert settings.PUBLISH_A_RECORD is False
    assert settings.A_RECORD_ADDRESS == ""
    assert settings.PUBLIC_IP_URL.startswith("https://")


@pytest.mark.parametrize("field", ["RENEWAL_THRESHOLD_DAYS", "RETRIEVE_MAX_ATTEMPTS", "MAX_PARALLEL_DOMAINS"])
def test_positive_fields(field):
    with pytest.raises(ValidationError):
        _settings(**{field: 0})


def test_retrieval_defaults():
    settings = _settings()
    assert settings.RETRIEVE_MAX_ATTEMPTS == 12
    assert settings.RETRIEVE_DELAY_SECONDS == 10.0
    assert settings.PROPAGATION_TIMEOUT_SECONDS == 120
    assert settings.RENEWAL_THRESHOLD_DAYS == 60


def test_cloudflare_global_key_needs_email():
    with pytest.raises(ValidationError):
        _settings(CLOUDFLARE_API_KEY="k")


def test_cloudflare_token_and_global_key_are_exclusive():
    with pytest.raises(ValidationError):
        _settings(CLOUDFLARE_API_TOKEN="t", CLOUDFLARE_API_EMAIL="e@example.com", CLOUDFLARE_API_KEY="k")


def test_account_contacts():
    assert _settings(ACME_ACCOUNT_EMAIL="ops@example.com").account_contacts("example.org") == [
        "mailto:ops@example.com"
    ]
    assert _settings(ACME_ACCOUNT_EMAIL="").account_contacts("example.org") == ["mailto:nomail@example.org"]
    assert _settings(ACME_ACCOUNT_EMAIL="").account_contacts() == []
