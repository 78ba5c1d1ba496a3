"""
Credential Store - the persistence contract used by the entitlement core.

One explicit interface (CredentialStore) with exactly one production
implementation (SQLAlchemyCredentialStore). Every operation is atomic at the
single-record level: each mutating call commits on its own and no caller
relies on multi-record transactions.

Contract:
- get / get_by_unique_key / create / update (merge semantics) / delete
- membership relation: add / remove / list for user / list for group / has
- narrow read helpers used by the community and subscription services
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.db_base import Base
from src.models.forum import ForumReply
from src.models.group import GroupMembership
from src.models.user import User
from src.models.zoom_call import ZoomCall, ZoomCallParticipant

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Base)

# Fields that may be used with get_by_unique_key, per model.
LOOKUP_KEYS: Dict[type, frozenset] = {
    User: frozenset({
        "username",
        "email",
        "verification_token",
        "verified_token_digest",
        "password_reset_token",
        "billing_customer_id",
        "billing_subscription_id",
    }),
}


class CredentialStoreError(Exception):
    """Base exception for credential store errors."""
    pass


class DuplicateRecordError(CredentialStoreError):
    """A unique constraint rejected the write."""
    pass


class UnsupportedLookupError(CredentialStoreError):
    """get_by_unique_key was called with a field that is not a lookup key."""
    pass


def _is_unique_violation(error: IntegrityError) -> bool:
    """True when the driver reports a unique/primary key conflict (SQLSTATE 23505 on Postgres)."""
    if getattr(error.orig, "pgcode", None) == "23505" or getattr(error.orig, "sqlstate", None) == "23505":
        return True
    message = str(error.orig).lower()
    return "unique constraint" in message or "duplicate key" in message


class CredentialStore(ABC):
    """Persistence contract for users, resources and memberships."""

    @abstractmethod
    def get(self, model: Type[T], record_id: str) -> Optional[T]:
        """Return the record with this primary key, or None."""

    @abstractmethod
    def get_by_unique_key(self, model: Type[T], field: str, value: Any) -> Optional[T]:
        """Return the single record whose `field` equals `value`, or None."""

    @abstractmethod
    def create(self, record: T) -> T:
        """Insert a new record. Raises DuplicateRecordError on conflicts."""

    @abstractmethod
    def update(self, model: Type[T], record_id: str, changes: Dict[str, Any]) -> Optional[T]:
        """Merge `changes` into the record. Returns None if it does not exist."""

    @abstractmethod
    def delete(self, model: Type[T], record_id: str) -> bool:
        """Delete the record. Returns False if it did not exist."""

    @abstractmethod
    def find(
        self,
        model: Type[T],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        **equals: Any,
    ) -> List[T]:
        """Return records matching every `field=value` pair."""

    @abstractmethod
    def count(self, model: Type[T], **equals: Any) -> int:
        """Count records matching every `field=value` pair."""

    # Membership relation

    @abstractmethod
    def add_membership(self, user_id: str, group_id: str) -> Tuple[GroupMembership, bool]:
        """Create the membership row. Returns (row, created)."""

    @abstractmethod
    def remove_membership(self, user_id: str, group_id: str) -> bool:
        """Delete the membership row. Returns False if there was none."""

    @abstractmethod
    def list_memberships_for_user(self, user_id: str) -> List[GroupMembership]:
        """All memberships held by a user."""

    @abstractmethod
    def list_members_for_group(self, group_id: str) -> List[User]:
        """All users who are members of a group, oldest membership first."""

    @abstractmethod
    def has_membership(self, user_id: str, group_id: str) -> bool:
        """True if the (user, group) membership row exists."""

    # Narrow helpers

    @abstractmethod
    def add_call_participant(self, call_id: str, user_id: str) -> bool:
        """Record a call participant. Returns False if already recorded."""

    @abstractmethod
    def list_calls_for_groups(
        self, group_ids: Iterable[str], starting_after: datetime
    ) -> List[ZoomCall]:
        """Calls in the given groups starting after a moment, soonest first."""

    @abstractmethod
    def count_replies_by_post(self, post_ids: Iterable[str]) -> Dict[str, int]:
        """Reply counts keyed by post id."""

    @abstractmethod
    def list_users_with_lapsed_premium(self, now: datetime) -> List[User]:
        """Users whose cached premium flag outlived premium_until."""


class SQLAlchemyCredentialStore(CredentialStore):
    """
    SQLAlchemy implementation of the credential store.

    Usage:
        store = SQLAlchemyCredentialStore(db_session)
        user = store.get_by_unique_key(User, "email", "a@example.com")
    """

    def __init__(self, db_session: Session):
        """
        Initialize store.

        Args:
            db_session: SQLAlchemy session for the current request or job
        """
        self.db = db_session

    def _commit(self, operation: str, model_name: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if not _is_unique_violation(e):
                logger.error("Integrity constraint rejected write", extra={
                    "operation": operation,
                    "model": model_name,
                    "error": str(e.orig),
                })
                raise
            logger.info("Unique constraint rejected write", extra={
                "operation": operation,
                "model": model_name,
            })
            raise DuplicateRecordError(f"{model_name} violates a uniqueness constraint") from e

    def get(self, model: Type[T], record_id: str) -> Optional[T]:
        if not record_id:
            return None
        return self.db.get(model, record_id)

    def get_by_unique_key(self, model: Type[T], field: str, value: Any) -> Optional[T]:
        allowed = LOOKUP_KEYS.get(model, frozenset())
        if field not in allowed:
            raise UnsupportedLookupError(f"{model.__name__}.{field} is not a lookup key")
        if value is None:
            return None
        return self.db.query(model).filter(getattr(model, field) == value).first()

    def create(self, record: T) -> T:
        self.db.add(record)
        self._commit("create", type(record).__name__)
        self.db.refresh(record)
        return record

    def update(self, model: Type[T], record_id: str, changes: Dict[str, Any]) -> Optional[T]:
        record = self.get(model, record_id)
        if record is None:
            return None
        for key, value in changes.items():
            if not hasattr(model, key):
                raise ValueError(f"{model.__name__} has no field '{key}'")
            setattr(record, key, value)
        self._commit("update", model.__name__)
        self.db.refresh(record)
        return record

    def delete(self, model: Type[T], record_id: str) -> bool:
        record = self.get(model, record_id)
        if record is None:
            return False
        self.db.delete(record)
        self.db.commit()
        return True

    def find(
        self,
        model: Type[T],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        **equals: Any,
    ) -> List[T]:
        query = self.db.query(model)
        for field, value in equals.items():
            query = query.filter(getattr(model, field) == value)
        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def count(self, model: Type[T], **equals: Any) -> int:
        query = self.db.query(func.count()).select_from(model)
        for field, value in equals.items():
            query = query.filter(getattr(model, field) == value)
        return query.scalar() or 0

    def add_membership(self, user_id: str, group_id: str) -> Tuple[GroupMembership, bool]:
        existing = self._get_membership(user_id, group_id)
        if existing is not None:
            return existing, False

        membership = GroupMembership(user_id=user_id, group_id=group_id)
        self.db.add(membership)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent join for the same pair.
            self.db.rollback()
            existing = self._get_membership(user_id, group_id)
            if existing is None:
                raise
            return existing, False
        self.db.refresh(membership)
        return membership, True

    def remove_membership(self, user_id: str, group_id: str) -> bool:
        membership = self._get_membership(user_id, group_id)
        if membership is None:
            return False
        self.db.delete(membership)
        self.db.commit()
        return True

    def list_memberships_for_user(self, user_id: str) -> List[GroupMembership]:
        return self.db.query(GroupMembership).filter(
            GroupMembership.user_id == user_id
        ).order_by(GroupMembership.joined_at.asc()).all()

    def list_members_for_group(self, group_id: str) -> List[User]:
        return self.db.query(User).join(
            GroupMembership, GroupMembership.user_id == User.id
        ).filter(
            GroupMembership.group_id == group_id
        ).order_by(GroupMembership.joined_at.asc()).all()

    def has_membership(self, user_id: str, group_id: str) -> bool:
        if not user_id or not group_id:
            return False
        return self._get_membership(user_id, group_id) is not None

    def _get_membership(self, user_id: str, group_id: str) -> Optional[GroupMembership]:
        return self.db.query(GroupMembership).filter(
            GroupMembership.user_id == user_id,
            GroupMembership.group_id == group_id,
        ).first()

    def add_call_participant(self, call_id: str, user_id: str) -> bool:
        existing = self.db.query(ZoomCallParticipant).filter(
            ZoomCallParticipant.call_id == call_id,
            ZoomCallParticipant.user_id == user_id,
        ).first()
        if existing is not None:
            return False
        self.db.add(ZoomCallParticipant(call_id=call_id, user_id=user_id))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def list_calls_for_groups(
        self, group_ids: Iterable[str], starting_after: datetime
    ) -> List[ZoomCall]:
        ids = list(group_ids)
        if not ids:
            return []
        return self.db.query(ZoomCall).filter(
            ZoomCall.group_id.in_(ids),
            ZoomCall.start_time > starting_after,
        ).order_by(ZoomCall.start_time.asc()).all()

    def count_replies_by_post(self, post_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(post_ids)
        if not ids:
            return {}
        rows = self.db.query(ForumReply.post_id, func.count(ForumReply.id)).filter(
            ForumReply.post_id.in_(ids)
        ).group_by(ForumReply.post_id).all()
        counts = {post_id: 0 for post_id in ids}
        counts.update({post_id: total for post_id, total in rows})
        return counts

    def list_users_with_lapsed_premium(self, now: datetime) -> List[User]:
        return self.db.query(User).filter(
            User.is_premium == True,  # noqa: E712
            User.premium_until.isnot(None),
            User.premium_until <= now,
        ).all()
