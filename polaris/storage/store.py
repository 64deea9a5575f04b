"""
Document store — projects, conversations, messages and the file tree.

Every public call takes the shared internal key as its first argument and
is rejected with UnauthorizedError when it doesn't match. Lookups by id
return None on a miss (including malformed ids) instead of raising.

Two backends with the same behaviour:
  - MongoDocumentStore  (storage/mongo.py) — Motor, used when MONGODB_URL is set
  - MemoryDocumentStore (below)            — process-local dicts for dev/tests

Node documents (files and folders):
    {id, project_id, parent_id, name, type: "file"|"folder", content, storage_id, updated_at}
parent_id None means the project root. Only files carry content.
"""

from __future__ import annotations

import hmac
import itertools
import logging
import uuid
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

DEFAULT_CONVERSATION_TITLE = "New conversation"

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

TYPE_FILE = "file"
TYPE_FOLDER = "folder"


# ── Errors ────────────────────────────────────────────────────────

class UnauthorizedError(PermissionError):
    """The internal key is missing or wrong."""


class StoreError(Exception):
    """A domain-level rejection (not an infrastructure fault)."""


class NotFoundError(StoreError):
    pass


class ConflictError(StoreError):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ──────────────────────────────────────────────────────────

class DocumentStore:
    """Shared credential check + helpers for both backends."""

    def __init__(self, internal_key: str):
        self._internal_key = internal_key

    def _authorize(self, internal_key: str | None):
        if not self._internal_key or not internal_key:
            raise UnauthorizedError("Internal key is not configured")
        if not hmac.compare_digest(internal_key, self._internal_key):
            raise UnauthorizedError("Invalid internal key")

    async def ensure_indexes(self):
        pass

    async def check_connection(self) -> bool:
        return True

    async def close(self):
        pass


# ── In-memory backend ─────────────────────────────────────────────

class MemoryDocumentStore(DocumentStore):
    """Dict-backed store. Returned documents are copies."""

    def __init__(self, internal_key: str):
        super().__init__(internal_key)
        self.projects: dict[str, dict] = {}
        self.conversations: dict[str, dict] = {}
        self.messages: dict[str, dict] = {}
        self.files: dict[str, dict] = {}
        self._seq = itertools.count()

    @staticmethod
    def _new_id(prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4().hex[:16]}"

    # ── Projects ──

    async def create_project(self, internal_key: str, name: str, owner_id: str) -> str:
        self._authorize(internal_key)
        project_id = self._new_id("prj")
        self.projects[project_id] = {
            "id": project_id,
            "name": name,
            "owner_id": owner_id,
            "updated_at": _now(),
        }
        return project_id

    async def get_project(self, internal_key: str, project_id: str) -> dict | None:
        self._authorize(internal_key)
        doc = self.projects.get(project_id)
        return dict(doc) if doc else None

    # ── Conversations ──

    async def create_conversation(
        self,
        internal_key: str,
        project_id: str,
        title: str = DEFAULT_CONVERSATION_TITLE,
    ) -> str:
        self._authorize(internal_key)
        conversation_id = self._new_id("cnv")
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "project_id": project_id,
            "title": title,
            "updated_at": _now(),
        }
        return conversation_id

    async def get_conversation(self, internal_key: str, conversation_id: str) -> dict | None:
        self._authorize(internal_key)
        doc = self.conversations.get(conversation_id)
        return dict(doc) if doc else None

    async def update_conversation_title(self, internal_key: str, conversation_id: str, title: str):
        self._authorize(internal_key)
        doc = self.conversations.get(conversation_id)
        if doc is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        doc["title"] = title
        doc["updated_at"] = _now()

    # ── Messages ──

    async def create_message(
        self,
        internal_key: str,
        conversation_id: str,
        project_id: str,
        role: str,
        content: str,
        status: str | None = None,
    ) -> str:
        self._authorize(internal_key)
        message_id = self._new_id("msg")
        self.messages[message_id] = {
            "id": message_id,
            "conversation_id": conversation_id,
            "project_id": project_id,
            "role": role,
            "content": content,
            "status": status,
            "created_at": _now(),
            "seq": next(self._seq),
        }
        return message_id

    async def get_message(self, internal_key: str, message_id: str) -> dict | None:
        self._authorize(internal_key)
        doc = self.messages.get(message_id)
        return dict(doc) if doc else None

    async def get_recent_messages(self, internal_key: str, conversation_id: str, limit: int = 10) -> list[dict]:
        """The `limit` most recent messages of a conversation, oldest first."""
        self._authorize(internal_key)
        rows = sorted(
            (m for m in self.messages.values() if m["conversation_id"] == conversation_id),
            key=lambda m: m["seq"],
        )
        return [dict(m) for m in rows[-limit:]] if limit > 0 else []

    async def get_processing_message(self, internal_key: str, conversation_id: str) -> dict | None:
        self._authorize(internal_key)
        for m in self.messages.values():
            if m["conversation_id"] == conversation_id and m["status"] == STATUS_PROCESSING:
                return dict(m)
        return None

    async def update_message_content(self, internal_key: str, message_id: str, content: str) -> bool:
        """Write the final content. Applies only while the message is processing."""
        self._authorize(internal_key)
        doc = self.messages.get(message_id)
        if doc is None or doc["status"] != STATUS_PROCESSING:
            return False
        doc["content"] = content
        doc["status"] = STATUS_COMPLETED
        return True

    async def update_message_status(self, internal_key: str, message_id: str, status: str) -> bool:
        self._authorize(internal_key)
        doc = self.messages.get(message_id)
        if doc is None or doc["status"] != STATUS_PROCESSING:
            return False
        doc["status"] = status
        return True

    # ── Files / folders ──

    async def get_project_files(self, internal_key: str, project_id: str) -> list[dict]:
        self._authorize(internal_key)
        return [dict(f) for f in self.files.values() if f["project_id"] == project_id]

    async def get_file(self, internal_key: str, file_id: str) -> dict | None:
        self._authorize(internal_key)
        doc = self.files.get(file_id)
        return dict(doc) if doc else None

    def _check_sibling(self, project_id: str, parent_id: str | None, name: str, exclude: str | None = None):
        for f in self.files.values():
            if (f["project_id"] == project_id and f["parent_id"] == parent_id
                    and f["name"] == name and f["id"] != exclude):
                kind = "Folder" if f["type"] == TYPE_FOLDER else "File"
                raise ConflictError(f'{kind} "{name}" already exists')

    def _insert_node(self, project_id: str, parent_id: str | None, name: str, node_type: str, content: str | None) -> str:
        self._check_sibling(project_id, parent_id, name)
        node_id = self._new_id("fil")
        self.files[node_id] = {
            "id": node_id,
            "project_id": project_id,
            "parent_id": parent_id,
            "name": name,
            "type": node_type,
            "content": content,
            "storage_id": None,
            "updated_at": _now(),
        }
        return node_id

    async def create_file(
        self,
        internal_key: str,
        project_id: str,
        name: str,
        content: str,
        parent_id: str | None = None,
    ) -> str:
        self._authorize(internal_key)
        return self._insert_node(project_id, parent_id, name, TYPE_FILE, content)

    async def create_folder(
        self,
        internal_key: str,
        project_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> str:
        self._authorize(internal_key)
        return self._insert_node(project_id, parent_id, name, TYPE_FOLDER, None)

    async def update_file(self, internal_key: str, file_id: str, content: str):
        self._authorize(internal_key)
        doc = self.files.get(file_id)
        if doc is None:
            raise NotFoundError(f"File {file_id} not found")
        if doc["type"] != TYPE_FILE:
            raise StoreError(f"{file_id} is a folder")
        doc["content"] = content
        doc["updated_at"] = _now()

    async def rename_file(self, internal_key: str, file_id: str, new_name: str):
        self._authorize(internal_key)
        doc = self.files.get(file_id)
        if doc is None:
            raise NotFoundError(f"File {file_id} not found")
        self._check_sibling(doc["project_id"], doc["parent_id"], new_name, exclude=file_id)
        doc["name"] = new_name
        doc["updated_at"] = _now()

    async def delete_file(self, internal_key: str, file_id: str) -> int:
        """Delete a node and, for folders, everything under it. Returns the count."""
        self._authorize(internal_key)
        if file_id not in self.files:
            raise NotFoundError(f"File {file_id} not found")
        doomed = [file_id]
        i = 0
        while i < len(doomed):
            parent = doomed[i]
            doomed.extend(f["id"] for f in self.files.values() if f["parent_id"] == parent)
            i += 1
        for node_id in doomed:
            self.files.pop(node_id, None)
        return len(doomed)
