"""
MongoDB backend for the document store (Motor).

Collections: projects, conversations, messages, files.
Documents leave this module with `_id` turned into a string `id`, so the
rest of the code never sees ObjectId.
"""

from __future__ import annotations

import logging

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from .store import (
    DEFAULT_CONVERSATION_TITLE,
    STATUS_COMPLETED,
    STATUS_PROCESSING,
    TYPE_FILE,
    TYPE_FOLDER,
    ConflictError,
    DocumentStore,
    NotFoundError,
    StoreError,
    _now,
)

logger = logging.getLogger(__name__)


def _oid(value: str | None) -> ObjectId | None:
    if not value:
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _out(doc: dict | None) -> dict | None:
    """Convert a MongoDB document to a plain dict with a string id."""
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


class MongoDocumentStore(DocumentStore):

    def __init__(self, internal_key: str, url: str, database: str = "polaris", client: AsyncIOMotorClient | None = None):
        super().__init__(internal_key)
        self._client = client or AsyncIOMotorClient(url)
        self._db = self._client[database]
        self._projects = self._db["projects"]
        self._conversations = self._db["conversations"]
        self._messages = self._db["messages"]
        self._files = self._db["files"]
        logger.info("[store] MongoDB document store ready (database: %s)", database)

    async def ensure_indexes(self):
        await self._messages.create_index([("conversation_id", ASCENDING), ("_id", DESCENDING)])
        await self._messages.create_index([("conversation_id", ASCENDING), ("status", ASCENDING)])
        await self._files.create_index([("project_id", ASCENDING), ("parent_id", ASCENDING), ("name", ASCENDING)])
        logger.info("[store] MongoDB indexes ensured")

    async def check_connection(self) -> bool:
        try:
            await self._db.command("ping")
            return True
        except Exception as e:
            logger.error("[store] Connection check failed: %s", e)
            return False

    async def close(self):
        self._client.close()
        logger.info("[store] MongoDB client closed")

    # ── Projects ──

    async def create_project(self, internal_key: str, name: str, owner_id: str) -> str:
        self._authorize(internal_key)
        result = await self._projects.insert_one({"name": name, "owner_id": owner_id, "updated_at": _now()})
        return str(result.inserted_id)

    async def get_project(self, internal_key: str, project_id: str) -> dict | None:
        self._authorize(internal_key)
        oid = _oid(project_id)
        return _out(await self._projects.find_one({"_id": oid})) if oid else None

    # ── Conversations ──

    async def create_conversation(
        self,
        internal_key: str,
        project_id: str,
        title: str = DEFAULT_CONVERSATION_TITLE,
    ) -> str:
        self._authorize(internal_key)
        result = await self._conversations.insert_one({
            "project_id": project_id,
            "title": title,
            "updated_at": _now(),
        })
        return str(result.inserted_id)

    async def get_conversation(self, internal_key: str, conversation_id: str) -> dict | None:
        self._authorize(internal_key)
        oid = _oid(conversation_id)
        return _out(await self._conversations.find_one({"_id": oid})) if oid else None

    async def update_conversation_title(self, internal_key: str, conversation_id: str, title: str):
        self._authorize(internal_key)
        result = await self._conversations.update_one(
            {"_id": _oid(conversation_id)},
            {"$set": {"title": title, "updated_at": _now()}},
        )
        if result.matched_count == 0:
            raise NotFoundError(f"Conversation {conversation_id} not found")

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
        result = await self._messages.insert_one({
            "conversation_id": conversation_id,
            "project_id": project_id,
            "role": role,
            "content": content,
            "status": status,
            "created_at": _now(),
        })
        return str(result.inserted_id)

    async def get_message(self, internal_key: str, message_id: str) -> dict | None:
        self._authorize(internal_key)
        oid = _oid(message_id)
        return _out(await self._messages.find_one({"_id": oid})) if oid else None

    async def get_recent_messages(self, internal_key: str, conversation_id: str, limit: int = 10) -> list[dict]:
        """The `limit` most recent messages of a conversation, oldest first."""
        self._authorize(internal_key)
        if limit <= 0:
            return []
        cursor = self._messages.find({"conversation_id": conversation_id}).sort("_id", DESCENDING).limit(limit)
        rows = [_out(doc) async for doc in cursor]
        rows.reverse()
        return rows

    async def get_processing_message(self, internal_key: str, conversation_id: str) -> dict | None:
        self._authorize(internal_key)
        return _out(await self._messages.find_one({
            "conversation_id": conversation_id,
            "status": STATUS_PROCESSING,
        }))

    async def update_message_content(self, internal_key: str, message_id: str, content: str) -> bool:
        """Write the final content. Applies only while the message is processing."""
        self._authorize(internal_key)
        result = await self._messages.update_one(
            {"_id": _oid(message_id), "status": STATUS_PROCESSING},
            {"$set": {"content": content, "status": STATUS_COMPLETED}},
        )
        return result.modified_count == 1

    async def update_message_status(self, internal_key: str, message_id: str, status: str) -> bool:
        self._authorize(internal_key)
        result = await self._messages.update_one(
            {"_id": _oid(message_id), "status": STATUS_PROCESSING},
            {"$set": {"status": status}},
        )
        return result.modified_count == 1

    # ── Files / folders ──

    async def get_project_files(self, internal_key: str, project_id: str) -> list[dict]:
        self._authorize(internal_key)
        return [_out(doc) async for doc in self._files.find({"project_id": project_id})]

    async def get_file(self, internal_key: str, file_id: str) -> dict | None:
        self._authorize(internal_key)
        oid = _oid(file_id)
        return _out(await self._files.find_one({"_id": oid})) if oid else None

    async def _check_sibling(self, project_id: str, parent_id: str | None, name: str, exclude: ObjectId | None = None):
        query = {"project_id": project_id, "parent_id": parent_id, "name": name}
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        existing = await self._files.find_one(query)
        if existing:
            kind = "Folder" if existing["type"] == TYPE_FOLDER else "File"
            raise ConflictError(f'{kind} "{name}" already exists')

    async def _insert_node(self, project_id: str, parent_id: str | None, name: str, node_type: str, content: str | None) -> str:
        await self._check_sibling(project_id, parent_id, name)
        result = await self._files.insert_one({
            "project_id": project_id,
            "parent_id": parent_id,
            "name": name,
            "type": node_type,
            "content": content,
            "storage_id": None,
            "updated_at": _now(),
        })
        return str(result.inserted_id)

    async def create_file(
        self,
        internal_key: str,
        project_id: str,
        name: str,
        content: str,
        parent_id: str | None = None,
    ) -> str:
        self._authorize(internal_key)
        return await self._insert_node(project_id, parent_id, name, TYPE_FILE, content)

    async def create_folder(
        self,
        internal_key: str,
        project_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> str:
        self._authorize(internal_key)
        return await self._insert_node(project_id, parent_id, name, TYPE_FOLDER, None)

    async def update_file(self, internal_key: str, file_id: str, content: str):
        self._authorize(internal_key)
        result = await self._files.update_one(
            {"_id": _oid(file_id), "type": TYPE_FILE},
            {"$set": {"content": content, "updated_at": _now()}},
        )
        if result.matched_count == 0:
            raise StoreError(f"File {file_id} not found or not a file")

    async def rename_file(self, internal_key: str, file_id: str, new_name: str):
        self._authorize(internal_key)
        oid = _oid(file_id)
        doc = await self._files.find_one({"_id": oid}) if oid else None
        if doc is None:
            raise NotFoundError(f"File {file_id} not found")
        await self._check_sibling(doc["project_id"], doc["parent_id"], new_name, exclude=oid)
        await self._files.update_one({"_id": oid}, {"$set": {"name": new_name, "updated_at": _now()}})

    async def delete_file(self, internal_key: str, file_id: str) -> int:
        """Delete a node and, for folders, everything under it. Returns the count."""
        self._authorize(internal_key)
        oid = _oid(file_id)
        if oid is None or await self._files.find_one({"_id": oid}) is None:
            raise NotFoundError(f"File {file_id} not found")
        doomed = [file_id]
        frontier = [file_id]
        while frontier:
            children = [str(doc["_id"]) async for doc in self._files.find({"parent_id": {"$in": frontier}}, {"_id": 1})]
            doomed.extend(children)
            frontier = children
        result = await self._files.delete_many({"_id": {"$in": [ObjectId(i) for i in doomed]}})
        return result.deleted_count
