"""
Tests for access policy loading from YAML.
"""

from datetime import timedelta

import pytest

from src.config.access_policy import (
    AccessPolicy,
    AccessPolicyLoader,
    get_access_policy,
)


def test_defaults():
    policy = AccessPolicy()
    assert policy.token_length == 32
    assert policy.verification_ttl == timedelta(hours=24)
    assert policy.password_reset_ttl == timedelta(hours=1)
    assert policy.session_ttl == timedelta(days=7)
    assert policy.premium_period == timedelta(days=30)
    assert policy.hide_premium_resources_from_anonymous is False


def test_loads_overrides_and_keeps_missing_defaults(make_yaml_config):
    path = make_yaml_config("access_policy.yml", {
        "tokens": {"password_reset_ttl_hours": 2},
        "visibility": {"hide_premium_resources_from_anonymous": True},
    })
    policy = AccessPolicyLoader(str(path)).load()

    assert policy.password_reset_ttl == timedelta(hours=2)
    assert policy.hide_premium_resources_from_anonymous is True
    assert policy.verification_ttl_hours == 24


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "access_policy.yml"
    path.write_text("")
    assert AccessPolicyLoader(str(path)).load() == AccessPolicy()


def test_short_tokens_rejected(make_yaml_config):
    path = make_yaml_config("access_policy.yml", {"tokens": {"length": 8}})
    with pytest.raises(ValueError, match="at least 16"):
        AccessPolicyLoader(str(path)).load()


def test_env_var_path(make_yaml_config, monkeypatch):
    path = make_yaml_config("policy.yml", {"sessions": {"ttl_days": 1}})
    monkeypatch.setenv("ACCESS_POLICY_PATH", str(path))
    assert get_access_policy().session_ttl == timedelta(days=1)


def test_repository_config_matches_defaults(monkeypatch):
    monkeypatch.delenv("ACCESS_POLICY_PATH", raising=False)
    assert get_access_policy() == AccessPolicy()
