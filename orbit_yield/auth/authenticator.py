"""Nonce challenge / signature response wallet authentication."""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from eth_utils import keccak

from ..config import AuthConfig
from ..errors import Conflict, InvalidQuery, InvalidSignature, Unauthorized
from ..interfaces.store import DocumentStore, NonceStore
from ..models import (
    ConnectedWallet,
    NonceChallenge,
    Session,
    WalletKind,
    canonical_address,
)
from .verifiers import SignatureVerifier

logger = logging.getLogger(__name__)

USERS = "users"
WALLET_CONNECTIONS = "wallet_connections"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def session_token(user_id: str, issued_ms: int, wallet_address: str) -> str:
    return "0x" + keccak(text=f"{user_id}-{issued_ms}-{wallet_address}").hex()


def _wallet_kind(value: WalletKind | str) -> WalletKind:
    return value if isinstance(value, WalletKind) else WalletKind.parse(value)


class WalletAuthenticator:
    """Issues nonces and exchanges signed nonces for sessions.

    One verifier per wallet kind. A kind that has no verifier, or is not in
    ``auth.enabled_kinds``, is rejected with InvalidQuery.
    """

    def __init__(
        self,
        verifiers: Mapping[WalletKind, SignatureVerifier],
        store: DocumentStore,
        nonces: NonceStore,
        config: AuthConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._verifiers = dict(verifiers)
        self._store = store
        self._nonces = nonces
        self._config = config
        self._clock = clock

    def _require_enabled(self, kind: WalletKind) -> SignatureVerifier:
        verifier = self._verifiers.get(kind)
        if kind.value not in self._config.enabled_kinds or verifier is None:
            raise InvalidQuery(f"Wallet type '{kind.value}' is not enabled")
        return verifier

    async def issue_nonce(
        self, wallet_address: str, wallet_kind: WalletKind | str
    ) -> NonceChallenge:
        address = canonical_address(wallet_address)
        kind = _wallet_kind(wallet_kind)
        self._require_enabled(kind)

        now = self._clock()
        nonce = f"0x{secrets.token_hex(32)}-{_ms(now)}-{address}-{kind.value}"
        challenge = NonceChallenge(
            nonce=nonce,
            message=f"{self._config.message_prefix}{nonce}",
            wallet_address=address,
            wallet_kind=kind,
            issued_at=now,
            expires_at=now + timedelta(seconds=self._config.nonce_ttl_seconds),
        )
        await self._nonces.prune(now)
        await self._nonces.put(challenge)
        logger.debug("Issued %s nonce for %s", kind.value, address)
        return challenge

    async def verify(
        self,
        message: str,
        signature: str,
        wallet_address: str,
        wallet_kind: WalletKind | str,
    ) -> bool:
        kind = _wallet_kind(wallet_kind)
        verifier = self._require_enabled(kind)
        return await verifier.verify(message, signature, canonical_address(wallet_address))

    async def authenticate(
        self,
        wallet_address: str,
        signature: str,
        nonce: str,
        wallet_kind: WalletKind | str,
    ) -> Session:
        address = canonical_address(wallet_address)
        kind = _wallet_kind(wallet_kind)
        self._require_enabled(kind)

        challenge = await self._nonces.get(nonce)
        if challenge is None:
            raise Unauthorized("Unknown nonce")
        if await self._nonces.is_consumed(nonce):
            raise Conflict("Nonce has already been used")
        now = self._clock()
        if challenge.expires_at <= now:
            raise Unauthorized("Nonce has expired")
        if challenge.wallet_address != address or challenge.wallet_kind != kind:
            raise Unauthorized("Nonce was issued for a different wallet")

        if not await self.verify(challenge.message, signature, address, kind):
            logger.info("Invalid %s signature for %s", kind.value, address)
            raise InvalidSignature("Signature does not match wallet address")

        if not await self._nonces.consume(nonce):
            raise Conflict("Nonce has already been used")

        user = await self._upsert_user(address, kind, now)
        token = session_token(user["_id"], _ms(now), address)
        user = await self._store.update(
            USERS, {"_id": user["_id"]}, {"$set": {"session_token": token}}
        )
        await self._touch_connection(user["_id"], address, kind, now)

        logger.info("Authenticated %s (%s)", address, kind.value)
        return Session(
            user_id=user["_id"],
            wallet_address=address,
            session_token=token,
            connected_wallets=tuple(
                ConnectedWallet(
                    address=w["address"],
                    kind=WalletKind(w["kind"]),
                    last_used=w["last_used"],
                )
                for w in user.get("connected_wallets", [])
            ),
            created_at=user["created_at"],
        )

    async def _upsert_user(
        self, address: str, kind: WalletKind, now: datetime
    ) -> dict[str, Any]:
        existing = await self._store.find_one(USERS, {"wallet_address": address})
        wallets = list(existing.get("connected_wallets", [])) if existing else []
        for wallet in wallets:
            if wallet["address"] == address and wallet["kind"] == kind.value:
                wallet["last_used"] = now
                break
        else:
            wallets.append({"address": address, "kind": kind.value, "last_used": now})

        return await self._store.update(
            USERS,
            {"wallet_address": address},
            {
                "$set": {"last_login": now, "connected_wallets": wallets},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )

    async def _touch_connection(
        self, user_id: str, address: str, kind: WalletKind, now: datetime
    ) -> None:
        await self._store.update(
            WALLET_CONNECTIONS,
            {"user_id": user_id, "wallet_address": address},
            {
                "$set": {"last_used": now, "is_active": True},
                "$setOnInsert": {"wallet_kind": kind.value, "connected_at": now},
            },
            upsert=True,
        )

    async def resolve_session(self, token: str | None) -> dict[str, Any]:
        """The user document owning ``token``; Unauthorized if there is none."""
        if not token:
            raise Unauthorized("Missing session token")
        user = await self._store.find_one(USERS, {"session_token": token})
        if user is None:
            raise Unauthorized("Invalid or expired session")
        return user
