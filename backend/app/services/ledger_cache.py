"""
Redis read-through cache around the transaction ledger.

``CachedTransactionLedger`` has the ledger's interface. List reads are served
from Redis as serialized ``TransactionRead`` payloads; every mutation goes to
the wrapped ledger first and then drops the keys of the parties and booking
it touched once the session commits, so a concurrent reader cannot re-cache
rows that are still uncommitted. Redis errors are logged and the call falls
through to the database.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import json
import logging
from typing import Any, Iterable, List, Optional, Set

import redis
from redis.exceptions import RedisError
from sqlalchemy import event

from app.core.config import settings
from app.core.constants import LEDGER_CACHE_PREFIX
from app.models.payment_transaction import PaymentTransaction, TransactionStage, TransactionStatus
from app.schemas.settlement import TransactionCreate, TransactionRead
from app.services.transaction_ledger import TransactionLedgerService

logger = logging.getLogger(__name__)


def get_ledger_cache_client() -> Optional["redis.Redis"]:
    """Redis client for ledger reads, or None when caching is off."""
    if not settings.ledger_cache_enabled or not settings.redis_url:
        return None
    return redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
        retry_on_timeout=True,
    )


def user_key(user_id: str) -> str:
    return f"{LEDGER_CACHE_PREFIX}:user:{user_id}"


def booking_key(booking_id: str) -> str:
    return f"{LEDGER_CACHE_PREFIX}:booking:{booking_id}"


def keys_for(transaction: PaymentTransaction) -> List[str]:
    keys = [user_key(uid) for uid in (transaction.from_user_id, transaction.to_user_id) if uid]
    if transaction.booking_id:
        keys.append(booking_key(transaction.booking_id))
    return keys


class CachedTransactionLedger:
    """Decorator adding a Redis read cache to ``TransactionLedgerService``."""

    def __init__(
        self,
        ledger: TransactionLedgerService,
        client: Optional[Any],
        ttl_seconds: Optional[int] = None,
    ):
        self.ledger = ledger
        self.client = client
        self.ttl_seconds = ttl_seconds or settings.ledger_cache_ttl_seconds
        self._pending: Set[str] = set()
        if client is not None:
            # Rolled back writes may still have been read into the cache by this session
            event.listen(ledger.db, "after_commit", self._flush_pending)
            event.listen(ledger.db, "after_rollback", self._flush_pending)

    @property
    def db(self) -> Any:
        return self.ledger.db

    # Cached reads

    def list_by_user(self, user_id: str) -> List[TransactionRead]:
        return self._read_through(user_key(user_id), lambda: self.ledger.list_by_user(user_id))

    def list_by_booking(self, booking_id: str) -> List[TransactionRead]:
        return self._read_through(
            booking_key(booking_id), lambda: self.ledger.list_by_booking(booking_id)
        )

    # Uncached reads

    def get_transaction(self, transaction_id: str) -> Optional[PaymentTransaction]:
        return self.ledger.get_transaction(transaction_id)

    def get_transaction_by_gateway_ref(self, gateway_reference: str) -> Optional[PaymentTransaction]:
        return self.ledger.get_transaction_by_gateway_ref(gateway_reference)

    def find_gateway_attempt(
        self, gateway_reference: str, status: TransactionStatus
    ) -> Optional[PaymentTransaction]:
        return self.ledger.find_gateway_attempt(gateway_reference, status)

    def list_due_refunds(self, now: datetime) -> List[PaymentTransaction]:
        return self.ledger.list_due_refunds(now)

    def list_refunds(self, transaction_id: str) -> List[PaymentTransaction]:
        return self.ledger.list_refunds(transaction_id)

    def total_refunded(self, transaction_id: str) -> Decimal:
        return self.ledger.total_refunded(transaction_id)

    def get_settled_payment(
        self, *, booking_id: Optional[str] = None, enrollment_id: Optional[str] = None
    ) -> Optional[PaymentTransaction]:
        return self.ledger.get_settled_payment(booking_id=booking_id, enrollment_id=enrollment_id)

    # Mutations

    def create_transaction(self, data: TransactionCreate) -> PaymentTransaction:
        return self._invalidating(self.ledger.create_transaction(data))

    def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        stage: Optional[TransactionStage] = None,
        *,
        now: Optional[datetime] = None,
    ) -> PaymentTransaction:
        return self._invalidating(
            self.ledger.update_status(transaction_id, status, stage, now=now)
        )

    def set_stage(self, transaction_id: str, stage: TransactionStage) -> PaymentTransaction:
        return self._invalidating(self.ledger.set_stage(transaction_id, stage))

    def set_payout_eligible_at(
        self, transaction_id: str, eligible_at: datetime
    ) -> PaymentTransaction:
        return self._invalidating(self.ledger.set_payout_eligible_at(transaction_id, eligible_at))

    def mark_scheduled_refund(
        self, transaction_id: str, refund_at: datetime, amount: Optional[Any] = None
    ) -> PaymentTransaction:
        return self._invalidating(
            self.ledger.mark_scheduled_refund(transaction_id, refund_at, amount)
        )

    def record_payout_disbursement(
        self, original: PaymentTransaction, payout: PaymentTransaction
    ) -> PaymentTransaction:
        updated = self.ledger.record_payout_disbursement(original, payout)
        self._pending.update(keys_for(payout))
        return self._invalidating(updated)

    def append_note(self, transaction_id: str, note: str) -> PaymentTransaction:
        return self._invalidating(self.ledger.append_note(transaction_id, note))

    # Cache plumbing

    def invalidate(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not self.client or not keys:
            return
        try:
            self.client.delete(*keys)
        except RedisError as exc:
            logger.warning(f"Ledger cache invalidation failed for {keys}: {exc}")

    def _invalidating(self, transaction: PaymentTransaction) -> PaymentTransaction:
        self._pending.update(keys_for(transaction))
        return transaction

    def _flush_pending(self, session: Any) -> None:
        keys, self._pending = self._pending, set()
        self.invalidate(sorted(keys))

    def _read_through(self, key: str, loader: Any) -> List[TransactionRead]:
        if self.client is not None:
            try:
                cached = self.client.get(key)
            except RedisError as exc:
                logger.warning(f"Ledger cache read failed for {key}: {exc}")
                cached = None
            if cached is not None:
                return [TransactionRead.model_validate(item) for item in json.loads(cached)]

        rows = [TransactionRead.model_validate(row) for row in loader()]
        if self.client is not None:
            payload = json.dumps([row.model_dump(mode="json") for row in rows])
            try:
                self.client.setex(key, self.ttl_seconds, payload)
            except RedisError as exc:
                logger.warning(f"Ledger cache write failed for {key}: {exc}")
        return rows


def build_ledger(db: Any) -> Any:
    """Ledger for a session, wrapped in the Redis cache when it is configured."""
    ledger = TransactionLedgerService(db)
    client = get_ledger_cache_client()
    if client is None:
        return ledger
    return CachedTransactionLedger(ledger, client)
