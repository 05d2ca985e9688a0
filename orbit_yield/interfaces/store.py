"""Persistence protocols: document store and nonce store."""
from datetime import datetime
from typing import Any, Protocol

from ..models import NonceChallenge


class DocumentStore(Protocol):
    """Collection-oriented document store (find / insert / update / delete)."""

    async def find_one(self, collection: str, query: dict[str, Any]) -> dict[str, Any] | None: ...

    async def find(
        self,
        collection: str,
        query: dict[str, Any],
        sort: tuple[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def count(self, collection: str, query: dict[str, Any]) -> int: ...

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self,
        collection: str,
        query: dict[str, Any],
        changes: dict[str, Any],
        upsert: bool = False,
    ) -> dict[str, Any] | None: ...

    async def delete(self, collection: str, query: dict[str, Any]) -> int: ...


class NonceStore(Protocol):
    """Issued nonces. ``consume`` must be atomic check-unused-then-mark-used."""

    async def put(self, challenge: NonceChallenge) -> None: ...

    async def get(self, nonce: str) -> NonceChallenge | None: ...

    async def is_consumed(self, nonce: str) -> bool: ...

    async def consume(self, nonce: str) -> bool: ...

    async def prune(self, now: datetime) -> int: ...
