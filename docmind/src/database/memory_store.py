"""
DocMind - Conversation Memory Stores
=====================================
Keyed storage with expiry for the short-term and key-info memory tiers.

Every operation on a key is atomic: a mapping merge never loses a
concurrent field, and a list append never outgrows its bound.  No
operation spans two keys.

``MongoMemoryStore``
    One MongoDB document per key, via ``motor``::

        {
            "_id": "chat:short_term:u1:42",
            "mapping": {"order_id": "ABC12345", ...},     # key-info tier
            "items": [{"role": "user", "content": "..."}],  # short-term tier
            "expires_at": datetime
        }

    A TTL index on ``expires_at`` purges expired documents; reads also
    filter on ``expires_at`` because the TTL monitor only runs about
    once a minute.

``InMemoryMemoryStore``
    Process-local fallback for single-instance deployments and tests.
    Takes an injectable clock so expiry can be tested without sleeping.
"""

from __future__ import annotations

import copy
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable

import motor.motor_asyncio
from pymongo import ReturnDocument

from docmind.config.settings import settings
from docmind.src.core.exceptions import ConfigurationError
from docmind.src.utils.locks import KeyedLock
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Type aliases ───────────────────────────────────────────────────────
Mapping = dict[str, str]
ListItem = dict[str, str]


# ══════════════════════════════════════════════════════════════════════
#  PROTOCOL
# ══════════════════════════════════════════════════════════════════════


@runtime_checkable
class MemoryStore(Protocol):

    async def get_mapping(self, key: str) -> Mapping: ...

    async def merge_mapping(self, key: str, delta: Mapping, ttl: timedelta) -> Mapping: ...

    async def append_list(self, key: str, items: list[ListItem], max_len: int, ttl: timedelta) -> None: ...

    async def get_list(self, key: str, limit: int | None = None) -> list[ListItem]: ...

    async def delete(self, key: str) -> None: ...


def _check_field_names(delta: Mapping) -> None:
    for name in delta:
        if not name or "." in name or name.startswith("$"):
            raise ValueError(f"invalid mapping field name: {name!r}")


# ══════════════════════════════════════════════════════════════════════
#  MONGODB SINGLETON CLIENT
# ══════════════════════════════════════════════════════════════════════

_mongo_client: motor.motor_asyncio.AsyncIOMotorClient | None = None


def _get_mongo_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return (or create) the module-level async MongoDB client."""
    global _mongo_client
    if _mongo_client is None:
        if settings.MONGO_URI is None:
            raise ConfigurationError("MONGO_URI is not set.")
        _mongo_client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI.get_secret_value())
        logger.info("MongoDB async client created (singleton).")
    return _mongo_client


# ══════════════════════════════════════════════════════════════════════
#  MONGO STORE
# ══════════════════════════════════════════════════════════════════════


class MongoMemoryStore:
    """
    Parameters
    ----------
    collection
        Optional pre-built motor collection.  Defaults to
        ``settings.MONGO_MEMORY_COLLECTION`` in ``settings.MONGO_DB_NAME``.
    """

    __slots__ = ("_collection", "_locks", "_indexed")

    def __init__(self, collection: motor.motor_asyncio.AsyncIOMotorCollection | None = None) -> None:
        if collection is None:
            collection = _get_mongo_client()[settings.MONGO_DB_NAME][settings.MONGO_MEMORY_COLLECTION]
        self._collection = collection
        self._locks = KeyedLock()
        self._indexed = False


    async def ensure_indexes(self) -> None:
        if not self._indexed:
            await self._collection.create_index("expires_at", expireAfterSeconds=0)
            self._indexed = True
            logger.info("[MEMORY] TTL index ensured on '%s.expires_at'.", self._collection.name)


    async def get_mapping(self, key: str) -> Mapping:
        doc = await self._collection.find_one(self._live(key), {"mapping": 1})
        if doc is None:
            return {}
        return dict(doc.get("mapping") or {})


    async def merge_mapping(self, key: str, delta: Mapping, ttl: timedelta) -> Mapping:
        _check_field_names(delta)
        await self.ensure_indexes()
        expires_at = self._now() + ttl

        async with self._locks.hold(key):
            update = {"$set": {"expires_at": expires_at, **{f"mapping.{k}": v for k, v in delta.items()}}}
            doc = await self._collection.find_one_and_update(self._live(key), update, return_document=ReturnDocument.AFTER)
            if doc is None:
                # Missing or expired: start a fresh record.
                await self._collection.replace_one({"_id": key}, {"_id": key, "mapping": dict(delta), "items": [], "expires_at": expires_at}, upsert=True)
                return dict(delta)
            return dict(doc.get("mapping") or {})


    async def append_list(self, key: str, items: list[ListItem], max_len: int, ttl: timedelta) -> None:
        await self.ensure_indexes()
        expires_at = self._now() + ttl

        async with self._locks.hold(key):
            update = {"$push": {"items": {"$each": list(items), "$slice": -max_len}}, "$set": {"expires_at": expires_at}}
            result = await self._collection.update_one(self._live(key), update)
            if result.matched_count == 0:
                await self._collection.replace_one({"_id": key}, {"_id": key, "mapping": {}, "items": list(items)[-max_len:], "expires_at": expires_at}, upsert=True)


    async def get_list(self, key: str, limit: int | None = None) -> list[ListItem]:
        projection = {"items": {"$slice": -limit}} if limit else {"items": 1}
        doc = await self._collection.find_one(self._live(key), projection)
        if doc is None:
            return []
        return list(doc.get("items") or [])


    async def delete(self, key: str) -> None:
        await self._collection.delete_one({"_id": key})


    def _live(self, key: str) -> dict[str, object]:
        return {"_id": key, "expires_at": {"$gt": self._now()}}


    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════════════
#  IN-PROCESS STORE
# ══════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class _Entry:
    expires_at: float
    mapping: Mapping = field(default_factory=dict)
    items: list[ListItem] = field(default_factory=list)


class InMemoryMemoryStore:
    """
    Dict-backed store.  Operations contain no ``await`` between read and
    write, so each one is atomic on the event loop.

    Parameters
    ----------
    clock
        Returns the current time in seconds.  Defaults to ``time.time``.
    """

    __slots__ = ("_entries", "_clock")

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._entries: dict[str, _Entry] = {}
        self._clock = clock or time.time


    async def get_mapping(self, key: str) -> Mapping:
        entry = self._live(key)
        return dict(entry.mapping) if entry else {}


    async def merge_mapping(self, key: str, delta: Mapping, ttl: timedelta) -> Mapping:
        _check_field_names(delta)
        entry = self._live(key) or self._entries.setdefault(key, _Entry(expires_at=0.0))
        entry.mapping.update(delta)
        entry.expires_at = self._clock() + ttl.total_seconds()
        return dict(entry.mapping)


    async def append_list(self, key: str, items: list[ListItem], max_len: int, ttl: timedelta) -> None:
        entry = self._live(key) or self._entries.setdefault(key, _Entry(expires_at=0.0))
        entry.items.extend(copy.deepcopy(items))
        del entry.items[:-max_len]
        entry.expires_at = self._clock() + ttl.total_seconds()


    async def get_list(self, key: str, limit: int | None = None) -> list[ListItem]:
        entry = self._live(key)
        if entry is None:
            return []
        items = entry.items[-limit:] if limit else entry.items
        return copy.deepcopy(items)


    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


    def _live(self, key: str) -> _Entry | None:
        """Return the unexpired entry for *key*, evicting it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry


    def __len__(self) -> int:
        return len(self._entries)
