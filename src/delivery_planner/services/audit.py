"""
Audit trail for packing transitions.

Each transition is appended to the order's status history and written to
the audit log.
"""

import logging
from datetime import datetime
from typing import Optional

from ..models.domain import Order, StatusChange

logger = logging.getLogger("delivery_planner.audit")


class AuditAction:
    """Standardized audit action constants."""
    PACKING_STARTED = "PACKING_STARTED"
    ITEM_PACKED = "ITEM_PACKED"
    ITEM_UNPACKED = "ITEM_UNPACKED"
    ORDER_READY = "ORDER_READY"
    ORDER_PAUSED = "ORDER_PAUSED"
    ORDER_RESUMED = "ORDER_RESUMED"
    ORDER_RESET = "ORDER_RESET"
    QUANTITY_CHANGED = "QUANTITY_CHANGED"
    NOTES_UPDATED = "NOTES_UPDATED"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    DRIVER_UNASSIGNED = "DRIVER_UNASSIGNED"


def record_event(
    order: Order,
    action: str,
    actor: str,
    at: datetime,
    notes: Optional[str] = None,
) -> StatusChange:
    """Append a status-history entry for ``order`` and log the action."""
    change = StatusChange(status=order.status, changed_at=at, changed_by=actor, notes=notes)
    order.status_history.append(change)
    logger.info(
        "%s order=%s actor=%s status=%s%s",
        action,
        order.order_id,
        actor,
        order.status.value,
        f" notes={notes!r}" if notes else "",
    )
    return change


def log_event(action: str, order_id: str, actor: str, **details: object) -> None:
    """Audit line for actions that do not touch the status history."""
    extra = " ".join(f"{key}={value}" for key, value in details.items())
    logger.info("%s order=%s actor=%s %s", action, order_id, actor, extra)
