"""A user's connected wallets."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from ..auth.authenticator import WALLET_CONNECTIONS
from ..errors import Conflict, InvalidQuery, NotFound
from ..interfaces.store import DocumentStore
from ..models import WalletConnection, WalletKind, canonical_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionPage:
    items: tuple[WalletConnection, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit)


def _to_connection(doc: dict[str, Any]) -> WalletConnection:
    return WalletConnection(
        id=doc["_id"],
        user_id=doc["user_id"],
        wallet_address=doc["wallet_address"],
        wallet_kind=WalletKind(doc["wallet_kind"]),
        connected_at=doc["connected_at"],
        last_used=doc["last_used"],
        is_active=doc.get("is_active", True),
    )


class WalletConnectionService:
    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._clock = clock
        self._write_lock = asyncio.Lock()

    async def list(
        self,
        user_id: str,
        wallet_kind: WalletKind | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> ConnectionPage:
        """Connections of ``user_id``, most recently used first."""
        if page < 1 or limit < 1:
            raise InvalidQuery("page and limit must be >= 1")
        query: dict[str, Any] = {"user_id": user_id}
        if wallet_kind is not None:
            query["wallet_kind"] = wallet_kind.value

        docs = await self._store.find(
            WALLET_CONNECTIONS,
            query,
            sort=("last_used", -1),
            skip=(page - 1) * limit,
            limit=limit,
        )
        total = await self._store.count(WALLET_CONNECTIONS, query)
        return ConnectionPage(
            items=tuple(_to_connection(d) for d in docs), total=total, page=page, limit=limit
        )

    async def add(
        self, user_id: str, wallet_address: str, wallet_kind: WalletKind
    ) -> WalletConnection:
        address = canonical_address(wallet_address)
        async with self._write_lock:
            existing = await self._store.find_one(
                WALLET_CONNECTIONS, {"user_id": user_id, "wallet_address": address}
            )
            if existing is not None:
                raise Conflict(f"Wallet {address} is already connected")
            now = self._clock()
            doc = await self._store.insert(
                WALLET_CONNECTIONS,
                {
                    "user_id": user_id,
                    "wallet_address": address,
                    "wallet_kind": wallet_kind.value,
                    "connected_at": now,
                    "last_used": now,
                    "is_active": True,
                },
            )
        logger.info("Connected %s wallet %s for user %s", wallet_kind.value, address, user_id)
        return _to_connection(doc)

    async def remove(self, user_id: str, connection_id: str) -> None:
        """Delete a connection owned by ``user_id``; NotFound otherwise."""
        removed = await self._store.delete(
            WALLET_CONNECTIONS, {"_id": connection_id, "user_id": user_id}
        )
        if not removed:
            raise NotFound("Wallet connection not found")
        logger.info("Removed wallet connection %s for user %s", connection_id, user_id)
