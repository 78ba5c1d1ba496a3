"""Repository layer: the credential store contract and its implementation."""

from src.repositories.credential_store import (
    CredentialStore,
    SQLAlchemyCredentialStore,
    CredentialStoreError,
    DuplicateRecordError,
    UnsupportedLookupError,
    LOOKUP_KEYS,
)

__all__ = [
    "CredentialStore",
    "SQLAlchemyCredentialStore",
    "CredentialStoreError",
    "DuplicateRecordError",
    "UnsupportedLookupError",
    "LOOKUP_KEYS",
]
