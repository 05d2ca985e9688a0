"""In-memory DocumentStore and NonceStore.

Process-local and lost on restart; a database-backed store implementing the
same protocols replaces them in production deployments.
"""
from __future__ import annotations

import asyncio
import copy
import uuid
from datetime import datetime, timezone
from typing import Any

from ..models import NonceChallenge


def _matches(document: dict[str, Any], query: dict[str, Any]) -> bool:
    return all(document.get(key) == value for key, value in query.items())


def _apply(document: dict[str, Any], changes: dict[str, Any], inserting: bool) -> None:
    """Apply ``$set`` / ``$setOnInsert`` / ``$addToSet`` operators in place."""
    for key, value in changes.get("$set", {}).items():
        document[key] = copy.deepcopy(value)
    if inserting:
        for key, value in changes.get("$setOnInsert", {}).items():
            document[key] = copy.deepcopy(value)
    for key, value in changes.get("$addToSet", {}).items():
        items = document.setdefault(key, [])
        if value not in items:
            items.append(copy.deepcopy(value))


class InMemoryDocumentStore:
    """Dict-of-lists document store with Mongo-style update operators."""

    def __init__(self) -> None:
        self._collections: dict[str, list[dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _docs(self, collection: str) -> list[dict[str, Any]]:
        return self._collections.setdefault(collection, [])

    async def find_one(self, collection: str, query: dict[str, Any]) -> dict[str, Any] | None:
        async with self._lock:
            for doc in self._docs(collection):
                if _matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    async def find(
        self,
        collection: str,
        query: dict[str, Any],
        sort: tuple[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        async with self._lock:
            found = [copy.deepcopy(d) for d in self._docs(collection) if _matches(d, query)]
        if sort is not None:
            field_name, direction = sort
            found.sort(key=lambda d: d.get(field_name), reverse=direction < 0)
        end = None if limit is None else skip + limit
        return found[skip:end]

    async def count(self, collection: str, query: dict[str, Any]) -> int:
        async with self._lock:
            return sum(1 for d in self._docs(collection) if _matches(d, query))

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(document)
        stored.setdefault("_id", uuid.uuid4().hex)
        async with self._lock:
            self._docs(collection).append(stored)
        return copy.deepcopy(stored)

    async def update(
        self,
        collection: str,
        query: dict[str, Any],
        changes: dict[str, Any],
        upsert: bool = False,
    ) -> dict[str, Any] | None:
        """Update the first match and return it; optionally insert when absent."""
        async with self._lock:
            for doc in self._docs(collection):
                if _matches(doc, query):
                    _apply(doc, changes, inserting=False)
                    return copy.deepcopy(doc)
            if not upsert:
                return None
            doc = {"_id": uuid.uuid4().hex, **copy.deepcopy(query)}
            _apply(doc, changes, inserting=True)
            self._docs(collection).append(doc)
            return copy.deepcopy(doc)

    async def delete(self, collection: str, query: dict[str, Any]) -> int:
        async with self._lock:
            docs = self._docs(collection)
            kept = [d for d in docs if not _matches(d, query)]
            removed = len(docs) - len(kept)
            self._collections[collection] = kept
        return removed


class InMemoryNonceStore:
    """Issued challenges keyed by nonce, with atomic single-use consumption."""

    def __init__(self) -> None:
        self._challenges: dict[str, NonceChallenge] = {}
        self._consumed: set[str] = set()
        self._lock = asyncio.Lock()

    async def put(self, challenge: NonceChallenge) -> None:
        async with self._lock:
            self._challenges[challenge.nonce] = challenge

    async def get(self, nonce: str) -> NonceChallenge | None:
        async with self._lock:
            return self._challenges.get(nonce)

    async def is_consumed(self, nonce: str) -> bool:
        async with self._lock:
            return nonce in self._consumed

    async def consume(self, nonce: str) -> bool:
        """Mark ``nonce`` used. False if unknown or already used."""
        async with self._lock:
            if nonce not in self._challenges or nonce in self._consumed:
                return False
            self._consumed.add(nonce)
            return True

    async def prune(self, now: datetime | None = None) -> int:
        """Forget every expired challenge, consumed or not.

        An expired nonce is rejected as unknown afterwards, so dropping a
        consumed one cannot let it authenticate twice.
        """
        now = now or datetime.now(timezone.utc)
        async with self._lock:
            expired = [
                nonce
                for nonce, challenge in self._challenges.items()
                if challenge.expires_at <= now
            ]
            for nonce in expired:
                del self._challenges[nonce]
                self._consumed.discard(nonce)
        return len(expired)
