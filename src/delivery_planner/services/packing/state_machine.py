"""Per-order packing lifecycle.

confirmed -> packing -> ready_for_delivery, with pause/resume inside packing
and reset back to packing (or confirmed when nothing was packed). Order-level
transitions run inside an order-store transaction so stock movements and the
status change land together; item flags are written one at a time so packers
on different items of one order do not block each other.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ...config import settings
from ...errors import (
    InsufficientStockError,
    InvalidPinError,
    ItemNotFoundError,
    QuantityValidationError,
    StaleInputError,
)
from ...models.domain import Order, OrderStatus
from ...persistence.memory import InMemoryOrderStore
from ..audit import AuditAction, log_event, record_event
from ..stock.store import ExpiryWarning, StockStore
from .pin import PinPolicy

logger = logging.getLogger(__name__)

RESETTABLE_STATUSES = frozenset({OrderStatus.PACKING, OrderStatus.READY_FOR_DELIVERY})
NOTES_EDITABLE_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.PACKING})


@dataclass(slots=True)
class StockWarning:
    kind: str  # expiring | expired | low_stock
    product_id: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ReadyResult:
    order: Order
    warnings: list[StockWarning] = field(default_factory=list)


def current_state(order: Order) -> dict[str, Any]:
    return {
        "status": order.status.value,
        "is_paused": order.packing.is_paused,
        "packed_count": order.packed_count,
        "total_items": len(order.items),
        "version": order.version,
    }


def _stale(order: Order, message: str) -> StaleInputError:
    return StaleInputError(message, order.order_id, current_state(order))


def _expiry_to_warning(warning: ExpiryWarning) -> StockWarning:
    if warning.is_expired:
        message = f"Batch {warning.batch_id} of {warning.product_id} expired {-warning.days_until_expiry} days ago"
        kind = "expired"
    else:
        message = f"Batch {warning.batch_id} of {warning.product_id} expires in {warning.days_until_expiry} days"
        kind = "expiring"
    return StockWarning(
        kind=kind,
        product_id=warning.product_id,
        message=message,
        details={
            "batch_id": warning.batch_id,
            "expiry_date": warning.expiry_date.isoformat(),
            "days_until_expiry": warning.days_until_expiry,
            "quantity": warning.quantity,
        },
    )


class PackingSessionStateMachine:
    def __init__(
        self,
        orders: InMemoryOrderStore,
        stock: StockStore,
        pin_policy: PinPolicy,
        clock: Optional[Callable[[], datetime]] = None,
        low_stock_threshold: Optional[float] = None,
    ) -> None:
        self.orders = orders
        self.stock = stock
        self.pin_policy = pin_policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.low_stock_threshold = (
            low_stock_threshold if low_stock_threshold is not None else settings.low_stock_threshold
        )

    def get_order(self, order_id: str) -> Order:
        return self.orders.get(order_id)

    def begin_packing(self, order_id: str, actor: str, expected_version: Optional[int] = None) -> Order:
        existing = self.orders.get(order_id)
        if existing.status is OrderStatus.PACKING:
            return existing

        now = self._clock()
        with self.orders.transaction(order_id, expected_version) as order:
            if order.status is not OrderStatus.CONFIRMED:
                raise _stale(order, f"Order cannot start packing from status {order.status.value}")
            order.status = OrderStatus.PACKING
            order.packing.started_at = now
            order.packing.last_activity_at = now
            record_event(order, AuditAction.PACKING_STARTED, actor, now)
        return self.orders.get(order_id)

    def mark_item_packed(self, order_id: str, item_id: str, packed: bool, actor: str) -> Order:
        """Flip one item's packed flag. Never touches stock."""

        def guard(order: Order) -> None:
            if order.status is not OrderStatus.PACKING:
                raise _stale(order, "Items can only be packed while the order is being packed")
            if order.packing.is_paused:
                raise _stale(order, "Order is paused. Resume it before packing items")

        order = self.orders.set_item_packed(order_id, item_id, packed, actor, self._clock(), guard=guard)
        log_event(
            AuditAction.ITEM_PACKED if packed else AuditAction.ITEM_UNPACKED,
            order_id,
            actor,
            item_id=item_id,
            packed_count=order.packed_count,
            total_items=len(order.items),
        )
        return order

    def mark_order_ready(
        self,
        order_id: str,
        actor: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ReadyResult:
        """Move a fully packed order to ready_for_delivery, consuming its stock once."""
        now = self._clock()
        consumed: dict[str, float] = {}
        reference: Optional[str] = None
        warnings: list[StockWarning] = []
        try:
            with self.orders.transaction(order_id, expected_version) as order:
                if order.status is not OrderStatus.PACKING:
                    raise _stale(order, f"Order cannot be marked ready from status {order.status.value}")
                if order.packing.is_paused:
                    raise _stale(order, "Order is paused. Resume it before marking ready")
                if not order.all_items_packed:
                    raise _stale(
                        order,
                        f"All items must be packed first ({order.packed_count}/{len(order.items)} packed)",
                    )

                reference = order.order_number
                if not order.packing.stock_consumed:
                    requests: dict[str, float] = defaultdict(float)
                    for item in order.items:
                        requests[item.stock_key] += item.quantity
                    expiry = self.stock.decrement_many(dict(requests), reference=reference)
                    consumed = dict(requests)
                    warnings.extend(_expiry_to_warning(warning) for warning in expiry)
                    order.packing.stock_consumed = True
                    order.packing.stock_consumed_at = now
                    order.packing.consumed_quantities = consumed

                order.status = OrderStatus.READY_FOR_DELIVERY
                order.packing.packed_by = actor
                order.packing.packed_at = now
                order.packing.last_activity_at = now
                if notes:
                    order.packing.notes = notes
                record_event(order, AuditAction.ORDER_READY, actor, now, notes)
        except Exception:
            for product_id, quantity in consumed.items():
                self.stock.restore(product_id, quantity, reference=reference)
            raise

        warnings.extend(self._low_stock_warnings(consumed))
        return ReadyResult(order=self.orders.get(order_id), warnings=warnings)

    def pause_order(
        self,
        order_id: str,
        actor: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        now = self._clock()
        with self.orders.transaction(order_id, expected_version) as order:
            if order.status is not OrderStatus.PACKING:
                raise _stale(order, f"Only orders being packed can be paused (status {order.status.value})")
            if order.packing.is_paused:
                raise _stale(order, "Order is already paused")
            if order.packed_count == 0:
                raise _stale(order, "Cannot pause an order with no packed items")
            order.packing.is_paused = True
            order.packing.paused_at = now
            order.packing.paused_by = actor
            order.packing.pause_reason = reason
            record_event(order, AuditAction.ORDER_PAUSED, actor, now, reason)
        return self.orders.get(order_id)

    def resume_order(self, order_id: str, actor: str, expected_version: Optional[int] = None) -> Order:
        now = self._clock()
        with self.orders.transaction(order_id, expected_version) as order:
            if not order.packing.is_paused:
                raise _stale(order, "Order is not paused")
            order.packing.is_paused = False
            order.packing.last_activity_at = now
            record_event(order, AuditAction.ORDER_RESUMED, actor, now)
        return self.orders.get(order_id)

    def reset_order(
        self,
        order_id: str,
        actor: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        """Clear packing progress, returning consumed stock if the order was ready."""
        now = self._clock()
        restored: dict[str, float] = {}
        reference: Optional[str] = None
        try:
            with self.orders.transaction(order_id, expected_version) as order:
                if order.status not in RESETTABLE_STATUSES:
                    raise _stale(order, f"Order cannot be reset from status {order.status.value}")

                had_progress = order.packed_count > 0
                reference = order.order_number
                if order.packing.stock_consumed:
                    for product_id, quantity in order.packing.consumed_quantities.items():
                        self.stock.restore(product_id, quantity, reference=reference)
                        restored[product_id] = quantity

                for item in order.items:
                    item.packed = False
                packing = order.packing
                packing.is_paused = False
                packing.paused_at = None
                packing.paused_by = None
                packing.pause_reason = None
                packing.notes = None
                packing.packed_by = None
                packing.packed_at = None
                packing.stock_consumed = False
                packing.stock_consumed_at = None
                packing.consumed_quantities = {}
                packing.last_activity_at = now
                order.status = OrderStatus.PACKING if had_progress else OrderStatus.CONFIRMED
                record_event(order, AuditAction.ORDER_RESET, actor, now, reason)
        except Exception:
            if restored:
                try:
                    self.stock.decrement_many(restored, reference=reference)
                except InsufficientStockError as exc:
                    logger.error(
                        "Could not take back stock returned by failed reset of %s: %s",
                        order_id,
                        exc.message,
                    )
            raise
        return self.orders.get(order_id)

    def update_item_quantity(
        self,
        order_id: str,
        item_id: str,
        new_quantity: float,
        actor: str,
        pin: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        """Change an unpacked item's quantity. Validated against stock, which is not consumed."""
        if new_quantity <= 0:
            raise QuantityValidationError(new_quantity)
        if self.pin_policy.is_pin_required():
            if not pin:
                raise InvalidPinError("missing")
            if not self.pin_policy.verify_pin(pin):
                log_event(AuditAction.QUANTITY_CHANGED, order_id, actor, item_id=item_id, result="invalid_pin")
                raise InvalidPinError("mismatch")

        now = self._clock()
        with self.orders.transaction(order_id, expected_version) as order:
            if order.status is not OrderStatus.PACKING or order.packing.is_paused:
                raise _stale(order, "Quantities can only change while the order is actively being packed")
            item = order.find_item(item_id)
            if item is None:
                raise ItemNotFoundError(order_id, item_id)
            if item.packed:
                raise _stale(order, f"Item {item_id} is already packed")

            available = self.stock.available(item.stock_key)
            if new_quantity > available:
                raise InsufficientStockError(item.stock_key, available, new_quantity)

            previous = item.quantity
            item.quantity = float(new_quantity)
            order.packing.last_activity_at = now
            record_event(
                order,
                AuditAction.QUANTITY_CHANGED,
                actor,
                now,
                f"{item_id}: {previous:g} -> {new_quantity:g}",
            )
        return self.orders.get(order_id)

    def add_packing_notes(self, order_id: str, notes: str, actor: str, expected_version: Optional[int] = None) -> Order:
        now = self._clock()
        with self.orders.transaction(order_id, expected_version) as order:
            if order.status not in NOTES_EDITABLE_STATUSES:
                raise _stale(order, f"Notes cannot be edited in status {order.status.value}")
            order.packing.notes = notes.strip() or None
            order.packing.last_activity_at = now
            record_event(order, AuditAction.NOTES_UPDATED, actor, now, order.packing.notes)
        return self.orders.get(order_id)

    def _low_stock_warnings(self, consumed: dict[str, float]) -> list[StockWarning]:
        warnings: list[StockWarning] = []
        for product_id in consumed:
            remaining = self.stock.available(product_id)
            if remaining <= self.low_stock_threshold:
                logger.warning("Stock for %s is low after packing: %.2f remaining", product_id, remaining)
                warnings.append(
                    StockWarning(
                        kind="low_stock",
                        product_id=product_id,
                        message=f"{product_id} has {remaining:g} left in stock",
                        details={"remaining": remaining, "threshold": self.low_stock_threshold},
                    )
                )
        return warnings
