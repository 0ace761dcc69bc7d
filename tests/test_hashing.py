"""
Tests for address hashing and the settings that feed it.
"""

import hashlib

import pytest
from pydantic import ValidationError

from ip_tracker.core.hashing import hash_ip
from ip_tracker.core.setting import (
    DEFAULT_IP_HASH_SECRET,
    EnvSettingsOptions,
    Settings,
    TrustProxyPolicy,
)


class TestHashIp:
    """Test the salted address digest."""

    def test_sha256_of_address_and_secret(self):
        expected = hashlib.sha256(b"203.0.113.5s3cret").hexdigest()
        assert hash_ip("203.0.113.5", "s3cret") == expected
        assert len(hash_ip("203.0.113.5", "s3cret")) == 64

    def test_deterministic(self):
        assert hash_ip("198.51.100.1", "a") == hash_ip("198.51.100.1", "a")

    def test_secret_changes_digest(self):
        assert hash_ip("198.51.100.1", "a") != hash_ip("198.51.100.1", "b")

    def test_distinct_addresses_distinct_digests(self):
        assert hash_ip("198.51.100.1", "a") != hash_ip("198.51.100.2", "a")

    def test_missing_address_has_no_hash(self):
        assert hash_ip(None, "a") is None
        assert hash_ip("", "a") is None


class TestSettings:
    """Test configuration rules around the hashing secret and proxy trust."""

    def test_default_secret_rejected_in_production(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, ENV_SETTING="production", IP_HASH_SECRET=DEFAULT_IP_HASH_SECRET)

    def test_default_secret_tolerated_in_development(self):
        settings = Settings(_env_file=None, ENV_SETTING="dev", IP_HASH_SECRET=DEFAULT_IP_HASH_SECRET)
        assert settings.uses_default_secret

    def test_custom_secret_in_production(self):
        settings = Settings(_env_file=None, ENV_SETTING="production", IP_HASH_SECRET="prod-secret")
        assert settings.ENV_SETTING == EnvSettingsOptions.production
        assert not settings.uses_default_secret

    def test_trust_policy_follows_environment(self):
        production = Settings(_env_file=None, ENV_SETTING="production", IP_HASH_SECRET="x")
        development = Settings(_env_file=None, ENV_SETTING="dev")
        assert production.trust_proxy_policy is TrustProxyPolicy.all
        assert development.trust_proxy_policy is TrustProxyPolicy.loopback_only

    def test_explicit_trust_policy_wins(self):
        settings = Settings(_env_file=None, ENV_SETTING="production", IP_HASH_SECRET="x", TRUST_PROXY="none")
        assert settings.trust_proxy_policy is TrustProxyPolicy.none

    def test_writer_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.WRITE_MAX_RETRIES == 2
        assert settings.STORE_RAW_IP is False
        assert settings.FILTER_PRIVATE_IPS is True
