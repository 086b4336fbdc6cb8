from __future__ import annotations

from typing import Any, List

from .db import InMemoryDatabase, db
from .utils import now_ts


class EventStore:
    """Persist session events so clients can poll via HTTP."""

    def __init__(self, database: InMemoryDatabase = db):
        self.counters_collection = database.session_event_counters
        self.events_collection = database.session_events

    async def append(self, session_id: str, payload: dict[str, Any]) -> int:
        """Store a new event for a session and return its sequence number."""

        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": session_id},
            {"$inc": {"seq": 1}},
        )
        seq = int(counter_doc["seq"])

        await self.events_collection.insert_one(
            {
                "session_id": session_id,
                "seq": seq,
                "timestamp": now_ts(),
                "payload": payload,
            }
        )
        return seq

    async def list(self, session_id: str, after: int | None = None, limit: int = 200) -> List[dict[str, Any]]:
        """Return events for a session that occur after the given sequence."""

        query: dict[str, Any] = {"session_id": session_id}
        if after is not None:
            query["seq"] = {"$gt": after}

        docs = await self.events_collection.find(query).sort("seq", 1).limit(limit).to_list()
        return [
            {"seq": doc["seq"], "timestamp": doc.get("timestamp"), "payload": doc.get("payload", {})}
            for doc in docs
        ]

    async def reset(self, session_id: str) -> None:
        """Start a fresh log for a session, beginning with a ``session_created`` marker."""

        await self.events_collection.delete_many({"session_id": session_id})
        await self.counters_collection.delete_many({"_id": session_id})
        await self.append(session_id, {"type": "session_created"})


event_store = EventStore()
