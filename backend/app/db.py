from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ADMIN_KEY: str = "change-me"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    COUNTDOWN_SECONDS: float = 3.0
    LOG_LEVEL: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


class InMemoryCursor:
    """Lazy query over a collection; ``sort`` and ``limit`` apply when read."""

    def __init__(self, collection: "InMemoryCollection", query: Dict[str, Any]):
        self._collection = collection
        self._query = query
        self._sort_key: Optional[str] = None
        self._descending = False
        self._limit: Optional[int] = None

    def sort(self, key: str, direction: int = 1):
        self._sort_key = key
        self._descending = direction < 0
        return self

    def limit(self, limit: int):
        self._limit = limit
        return self

    async def to_list(self) -> List[Dict[str, Any]]:
        docs = await self._collection._find_all(self._query)
        if self._sort_key is not None:
            docs.sort(key=lambda d: d.get(self._sort_key), reverse=self._descending)
        if self._limit is not None:
            docs = docs[: self._limit]
        return docs


class InMemoryCollection:
    """Document collection with the subset of the motor API the engine uses.

    Every read hands back deep copies, so callers can mutate what they get
    without touching the stored documents.
    """

    def __init__(self):
        self._docs: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def _find_all(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if _matches(doc, query)]

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            doc = self._first(query)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, query: Optional[Dict[str, Any]] = None) -> InMemoryCursor:
        return InMemoryCursor(self, query or {})

    async def insert_one(self, document: Dict[str, Any]):
        async with self._lock:
            self._docs.append(copy.deepcopy(document))

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        async with self._lock:
            self._update(query, update, upsert)

    async def find_one_and_update(self, query: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Upsert and return the document as it is after the update (used for counters)."""
        async with self._lock:
            return copy.deepcopy(self._update(query, update, upsert=True))

    async def delete_many(self, query: Dict[str, Any]):
        async with self._lock:
            self._docs = [doc for doc in self._docs if not _matches(doc, query)]

    async def count_documents(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            return sum(1 for doc in self._docs if _matches(doc, query))

    def _first(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return next((doc for doc in self._docs if _matches(doc, query)), None)

    def _update(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool) -> Optional[Dict[str, Any]]:
        doc = self._first(query)
        if doc is None:
            if not upsert:
                return None
            doc = copy.deepcopy(query)
            self._docs.append(doc)

        for op, payload in update.items():
            if op == "$set":
                for key, value in payload.items():
                    doc[key] = copy.deepcopy(value)
            elif op == "$inc":
                for key, value in payload.items():
                    doc[key] = doc.get(key, 0) + value
            else:
                raise ValueError(f"Unsupported update operator: {op}")
        return doc


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, expected in query.items():
        actual = doc.get(key)
        if not isinstance(expected, dict):
            if actual != expected:
                return False
            continue
        for op, operand in expected.items():
            if op == "$gt":
                if actual is None or actual <= operand:
                    return False
            elif op == "$ne":
                if actual == operand:
                    return False
            else:
                raise ValueError(f"Unsupported query operator: {op}")
    return True


class InMemoryDatabase:
    def __init__(self):
        self.owner_tokens = InMemoryCollection()
        self.quizzes = InMemoryCollection()
        self.counters = InMemoryCollection()
        self.sessions = InMemoryCollection()
        self.answers = InMemoryCollection()
        self.session_event_counters = InMemoryCollection()
        self.session_events = InMemoryCollection()

    def collections(self) -> List[InMemoryCollection]:
        return [value for value in vars(self).values() if isinstance(value, InMemoryCollection)]

    async def clear(self) -> None:
        for collection in self.collections():
            await collection.delete_many({})


db: Any = InMemoryDatabase()
