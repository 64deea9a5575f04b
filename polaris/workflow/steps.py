"""
Step stores — where the engine checkpoints runs and step results.

A run record:   {run_id, function_id, event: {id, name, data}, status, error}
A step record:  {run_id, key, result}

Step results must be plain data (dicts, lists, strings, numbers, None) so
the Mongo backend can persist them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger(__name__)

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"
RUN_CANCELLED = "cancelled"


class MemoryStepStore:
    """In-process step store. Survives engine re-entry, not process restarts."""

    def __init__(self):
        self.runs: dict[str, dict] = {}
        self.steps: dict[tuple[str, str], Any] = {}

    async def get_step(self, run_id: str, key: str) -> tuple[bool, Any]:
        if (run_id, key) in self.steps:
            return True, self.steps[(run_id, key)]
        return False, None

    async def put_step(self, run_id: str, key: str, result: Any):
        self.steps[(run_id, key)] = result

    async def save_run(self, run_id: str, function_id: str, event: dict, status: str, error: str | None = None):
        self.runs[run_id] = {
            "run_id": run_id,
            "function_id": function_id,
            "event": event,
            "status": status,
            "error": error,
        }

    async def get_run(self, run_id: str) -> dict | None:
        run = self.runs.get(run_id)
        return dict(run) if run else None

    async def pending_runs(self) -> list[dict]:
        return [dict(r) for r in self.runs.values() if r["status"] == RUN_RUNNING]

    def step_keys(self, run_id: str) -> list[str]:
        return [key for (rid, key) in self.steps if rid == run_id]

    async def ensure_indexes(self):
        pass

    async def close(self):
        pass


class MongoStepStore:
    """Step store on MongoDB so runs resume after a process restart."""

    def __init__(self, url: str, database: str = "polaris", client: AsyncIOMotorClient | None = None):
        self._client = client or AsyncIOMotorClient(url)
        db = self._client[database]
        self._runs = db["workflow_runs"]
        self._steps = db["workflow_steps"]
        logger.info("[steps] MongoDB step store ready (database: %s)", database)

    async def ensure_indexes(self):
        await self._steps.create_index([("run_id", 1), ("key", 1)], unique=True)
        await self._runs.create_index("run_id", unique=True)
        await self._runs.create_index("status")

    async def get_step(self, run_id: str, key: str) -> tuple[bool, Any]:
        doc = await self._steps.find_one({"run_id": run_id, "key": key})
        if doc is None:
            return False, None
        return True, doc.get("result")

    async def put_step(self, run_id: str, key: str, result: Any):
        await self._steps.update_one(
            {"run_id": run_id, "key": key},
            {"$set": {"result": result, "completed_at": datetime.now(timezone.utc)}},
            upsert=True,
        )

    async def save_run(self, run_id: str, function_id: str, event: dict, status: str, error: str | None = None):
        await self._runs.update_one(
            {"run_id": run_id},
            {"$set": {
                "function_id": function_id,
                "event": event,
                "status": status,
                "error": error,
                "updated_at": datetime.now(timezone.utc),
            }},
            upsert=True,
        )

    async def get_run(self, run_id: str) -> dict | None:
        doc = await self._runs.find_one({"run_id": run_id})
        if doc:
            doc.pop("_id", None)
        return doc

    async def pending_runs(self) -> list[dict]:
        rows = []
        async for doc in self._runs.find({"status": RUN_RUNNING}):
            doc.pop("_id", None)
            rows.append(doc)
        return rows

    async def close(self):
        self._client.close()
