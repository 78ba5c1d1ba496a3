"""
Access policy configuration loader.

Loads config/access_policy.yml, the single source of truth for token
lifetimes, session lifetime, the fallback premium period and the
premium-resource visibility rule.

Consumers:
  - AccountTokenService: token length and TTLs
  - SessionService: session TTL
  - SubscriptionService: fallback premium period
  - EntitlementEngine: hide_premium_resources_from_anonymous

Usage:
    from src.config.access_policy import get_access_policy

    policy = get_access_policy()
    ttl = policy.verification_ttl
"""

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessPolicy:
    """Resolved policy values."""
    token_length: int = 32
    verification_ttl_hours: int = 24
    password_reset_ttl_hours: int = 1
    session_ttl_days: int = 7
    premium_period_days: int = 30
    hide_premium_resources_from_anonymous: bool = False
    suggested_groups_limit: int = 5

    @property
    def verification_ttl(self) -> timedelta:
        return timedelta(hours=self.verification_ttl_hours)

    @property
    def password_reset_ttl(self) -> timedelta:
        return timedelta(hours=self.password_reset_ttl_hours)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(days=self.session_ttl_days)

    @property
    def premium_period(self) -> timedelta:
        return timedelta(days=self.premium_period_days)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AccessPolicy":
        """Build from the parsed YAML document; absent keys keep defaults."""
        defaults = cls()
        tokens = raw.get("tokens") or {}
        sessions = raw.get("sessions") or {}
        premium = raw.get("premium") or {}
        visibility = raw.get("visibility") or {}
        groups = raw.get("groups") or {}

        policy = cls(
            token_length=int(tokens.get("length", defaults.token_length)),
            verification_ttl_hours=int(
                tokens.get("verification_ttl_hours", defaults.verification_ttl_hours)
            ),
            password_reset_ttl_hours=int(
                tokens.get("password_reset_ttl_hours", defaults.password_reset_ttl_hours)
            ),
            session_ttl_days=int(sessions.get("ttl_days", defaults.session_ttl_days)),
            premium_period_days=int(premium.get("period_days", defaults.premium_period_days)),
            hide_premium_resources_from_anonymous=bool(
                visibility.get(
                    "hide_premium_resources_from_anonymous",
                    defaults.hide_premium_resources_from_anonymous,
                )
            ),
            suggested_groups_limit=int(
                groups.get("suggested_limit", defaults.suggested_groups_limit)
            ),
        )
        if policy.token_length < 16:
            raise ValueError("tokens.length must be at least 16")
        return policy


class AccessPolicyLoader:
    """
    Thread-safe loader for config/access_policy.yml.

    Falls back to built-in defaults when the file is absent, so an installed
    package without the repo's config directory still starts.
    """

    def __init__(self, config_path: Optional[str] = None):
        self._config_path = config_path
        self._policy: Optional[AccessPolicy] = None
        self._load_lock = Lock()

    def _resolve_path(self) -> Optional[Path]:
        explicit = self._config_path or os.getenv("ACCESS_POLICY_PATH")
        if explicit:
            return Path(explicit)

        candidates = [
            # From backend/src/config up to the repository root
            Path(__file__).parent.parent.parent.parent / "config" / "access_policy.yml",
            Path(os.getcwd()) / "config" / "access_policy.yml",
            Path(os.getcwd()) / ".." / "config" / "access_policy.yml",
        ]
        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved
        return None

    def load(self) -> AccessPolicy:
        with self._load_lock:
            path = self._resolve_path()
            if path is None:
                logger.info("access_policy.yml not found, using built-in defaults")
                self._policy = AccessPolicy()
                return self._policy

            logger.info("Loading access policy from %s", path)
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
            self._policy = AccessPolicy.from_dict(raw)
            return self._policy

    @property
    def policy(self) -> AccessPolicy:
        if self._policy is None:
            return self.load()
        return self._policy


# ------------------------------------------------------------------
# Module-level accessors
# ------------------------------------------------------------------

_loader: Optional[AccessPolicyLoader] = None
_loader_lock = Lock()


def get_access_policy(config_path: Optional[str] = None) -> AccessPolicy:
    """Return the process-wide AccessPolicy."""
    global _loader
    with _loader_lock:
        if _loader is None:
            _loader = AccessPolicyLoader(config_path)
    return _loader.policy


def reset_access_policy() -> None:
    """Reset the cached policy (for tests only)."""
    global _loader
    with _loader_lock:
        _loader = None
