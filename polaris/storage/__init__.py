"""
Storage - the document store (projects, conversations, messages, files).
"""

from .store import (
    DEFAULT_CONVERSATION_TITLE,
    ConflictError,
    DocumentStore,
    MemoryDocumentStore,
    NotFoundError,
    StoreError,
    UnauthorizedError,
)

__all__ = [
    "DEFAULT_CONVERSATION_TITLE",
    "ConflictError",
    "DocumentStore",
    "MemoryDocumentStore",
    "NotFoundError",
    "StoreError",
    "UnauthorizedError",
]
