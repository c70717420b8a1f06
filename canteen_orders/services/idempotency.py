"""
Idempotency guard
Get-or-create semantics for order placement keyed by a client token

The unique constraint on orders.idempotency_key is the source of truth.
This guard only short-circuits the common case (key already committed)
and, after a losing race, finds the winner's order.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import structlog

from ..config.settings import IDEMPOTENCY_KEY_MAX_LENGTH
from ..core.failures import InvalidRequest
from ..core.store import StoreGateway
from ..models.order import Order

logger = structlog.get_logger(__name__)


class IdempotencyStatus(str, Enum):
    NO_KEY = "no_key"
    NOT_FOUND = "not_found"
    FOUND = "found"


@dataclass(frozen=True)
class IdempotencyCheck:
    """Outcome of check_or_fetch"""
    status: IdempotencyStatus
    order: Optional[Order] = None

    @property
    def hit(self) -> bool:
        return self.status is IdempotencyStatus.FOUND


def normalize_key(key: Optional[str]) -> Optional[str]:
    """Blank keys count as no key; anything else is kept verbatim"""
    if key is None or not key.strip():
        return None
    return key


class IdempotencyGuard:
    """Idempotency key lookups against the store"""

    def __init__(self, store: StoreGateway, max_length: int = IDEMPOTENCY_KEY_MAX_LENGTH,
                 requery_attempts: int = 10, requery_delay: float = 0.05,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.max_length = max_length
        self.requery_attempts = max(1, requery_attempts)
        self.requery_delay = requery_delay
        self._sleep = sleep

    def validate_key(self, key: Optional[str]) -> Optional[InvalidRequest]:
        if key is not None and len(key) > self.max_length:
            return InvalidRequest(
                field="idempotency_key",
                reason=f"must be at most {self.max_length} characters",
            )
        return None

    def check_or_fetch(self, key: Optional[str]) -> IdempotencyCheck:
        """
        Look up an existing order for the key

        Args:
            key: client supplied key, already normalized

        Returns:
            IdempotencyCheck: NO_KEY, NOT_FOUND or FOUND with the order
        """
        if key is None:
            return IdempotencyCheck(IdempotencyStatus.NO_KEY)

        existing = self.store.find_order_by_idempotency_key(key)
        if existing is None:
            return IdempotencyCheck(IdempotencyStatus.NOT_FOUND)
        return IdempotencyCheck(IdempotencyStatus.FOUND, existing)

    def resolve_conflict(self, key: str) -> Optional[Order]:
        """
        Find the order that won a race on this key

        The winner may still be committing when the loser gets here, so the
        lookup is repeated a bounded number of times.
        """
        for attempt in range(1, self.requery_attempts + 1):
            existing = self.store.find_order_by_idempotency_key(key)
            if existing is not None:
                logger.info("idempotency conflict resolved",
                            idempotency_key=key, order_id=existing.id, attempt=attempt)
                return existing
            if attempt < self.requery_attempts:
                self._sleep(self.requery_delay)

        logger.warning("idempotency conflict unresolved",
                       idempotency_key=key, attempts=self.requery_attempts)
        return None
