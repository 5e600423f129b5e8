"""In-memory stock store with FIFO batches and expiry warnings."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Mapping, Optional, Protocol

from ...config import settings
from ...errors import InsufficientStockError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StockBatch:
    batch_id: str
    product_id: str
    received_at: datetime
    quantity_remaining: float
    expiry_date: Optional[date] = None


@dataclass(slots=True)
class StockTransaction:
    product_id: str
    transaction_type: str  # receive | sale | return
    quantity: float
    previous_stock: float
    new_stock: float
    reference: Optional[str]
    created_at: datetime


@dataclass(slots=True)
class ExpiryWarning:
    product_id: str
    batch_id: str
    expiry_date: date
    days_until_expiry: int
    quantity: float

    @property
    def is_expired(self) -> bool:
        return self.days_until_expiry < 0


class StockStore(Protocol):
    def available(self, product_id: str) -> float:
        ...

    def decrement_many(self, requests: Mapping[str, float], reference: Optional[str] = None) -> list[ExpiryWarning]:
        ...

    def restore(self, product_id: str, quantity: float, reference: Optional[str] = None) -> None:
        ...


class InMemoryStockStore:
    """Per-product FIFO batches; oldest received stock is consumed first."""

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        expiry_warning_days: Optional[int] = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.expiry_warning_days = (
            expiry_warning_days if expiry_warning_days is not None else settings.expiry_warning_days
        )
        self._batches: dict[str, list[StockBatch]] = {}
        self._transactions: list[StockTransaction] = []
        self._lock = threading.RLock()
        self._ids = itertools.count(1)

    def receive(
        self,
        product_id: str,
        quantity: float,
        *,
        expiry_date: Optional[date] = None,
        received_at: Optional[datetime] = None,
        batch_id: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> StockBatch:
        if quantity <= 0:
            raise ValueError("Received quantity must be positive.")
        with self._lock:
            batch = StockBatch(
                batch_id=batch_id or f"B{next(self._ids):05d}",
                product_id=product_id,
                received_at=received_at or self._clock(),
                quantity_remaining=float(quantity),
                expiry_date=expiry_date,
            )
            previous = self._available_unlocked(product_id)
            batches = self._batches.setdefault(product_id, [])
            batches.append(batch)
            batches.sort(key=lambda item: item.received_at)
            self._record(product_id, "receive", quantity, previous, reference)
            return batch

    def available(self, product_id: str) -> float:
        with self._lock:
            return self._available_unlocked(product_id)

    def batches(self, product_id: str) -> list[StockBatch]:
        with self._lock:
            return [batch for batch in self._batches.get(product_id, []) if batch.quantity_remaining > 0]

    def transactions(self, product_id: Optional[str] = None) -> list[StockTransaction]:
        with self._lock:
            return [tx for tx in self._transactions if product_id is None or tx.product_id == product_id]

    def decrement(self, product_id: str, quantity: float, reference: Optional[str] = None) -> list[ExpiryWarning]:
        return self.decrement_many({product_id: quantity}, reference)

    def decrement_many(self, requests: Mapping[str, float], reference: Optional[str] = None) -> list[ExpiryWarning]:
        """Consume every requested quantity, or nothing if any product falls short."""
        with self._lock:
            for product_id, quantity in requests.items():
                available = self._available_unlocked(product_id)
                if quantity > available:
                    raise InsufficientStockError(product_id, available, quantity)

            warnings: list[ExpiryWarning] = []
            for product_id, quantity in requests.items():
                if quantity <= 0:
                    continue
                previous = self._available_unlocked(product_id)
                warnings.extend(self._consume_fifo(product_id, quantity))
                self._record(product_id, "sale", quantity, previous, reference)

        for warning in warnings:
            logger.warning(
                "Consumed %.2f of %s from batch %s %s",
                warning.quantity,
                warning.product_id,
                warning.batch_id,
                "which has expired" if warning.is_expired else f"expiring in {warning.days_until_expiry} days",
            )
        return warnings

    def restore(self, product_id: str, quantity: float, reference: Optional[str] = None) -> None:
        """Return stock as a new batch."""
        if quantity <= 0:
            return
        with self._lock:
            previous = self._available_unlocked(product_id)
            batches = self._batches.setdefault(product_id, [])
            batches.append(
                StockBatch(
                    batch_id=f"R{next(self._ids):05d}",
                    product_id=product_id,
                    received_at=self._clock(),
                    quantity_remaining=float(quantity),
                )
            )
            batches.sort(key=lambda item: item.received_at)
            self._record(product_id, "return", quantity, previous, reference)

    def _available_unlocked(self, product_id: str) -> float:
        return sum(batch.quantity_remaining for batch in self._batches.get(product_id, []))

    def _consume_fifo(self, product_id: str, quantity: float) -> list[ExpiryWarning]:
        today = self._clock().date()
        remaining = quantity
        warnings: list[ExpiryWarning] = []
        for batch in self._batches.get(product_id, []):
            if remaining <= 0:
                break
            if batch.quantity_remaining <= 0:
                continue
            taken = min(batch.quantity_remaining, remaining)
            batch.quantity_remaining -= taken
            remaining -= taken
            if batch.expiry_date is not None:
                days = (batch.expiry_date - today).days
                if days <= self.expiry_warning_days:
                    warnings.append(
                        ExpiryWarning(
                            product_id=product_id,
                            batch_id=batch.batch_id,
                            expiry_date=batch.expiry_date,
                            days_until_expiry=days,
                            quantity=taken,
                        )
                    )
        return warnings

    def _record(self, product_id: str, transaction_type: str, quantity: float, previous: float, reference: Optional[str]) -> None:
        self._transactions.append(
            StockTransaction(
                product_id=product_id,
                transaction_type=transaction_type,
                quantity=float(quantity),
                previous_stock=previous,
                new_stock=self._available_unlocked(product_id),
                reference=reference,
                created_at=self._clock(),
            )
        )
