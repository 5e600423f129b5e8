"""Idle packing sweep, meant to be triggered periodically."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from ...config import settings
from ...errors import AppException
from ...models.domain import OrderStatus
from .state_machine import PackingSessionStateMachine

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(slots=True)
class SweepOutcome:
    order_id: str
    action: str  # paused | reset | skipped
    idle_minutes: float
    detail: Optional[str] = None


def sweep_idle_orders(
    machine: PackingSessionStateMachine,
    now: datetime,
    timeout_minutes: Optional[int] = None,
) -> list[SweepOutcome]:
    """Pause idle orders that have progress; reset idle orders that have none.

    Each order goes through the ordinary transitions, so a packer acting on
    the same order at the same moment wins or loses exactly as another packer
    would.
    """
    now = as_utc(now)
    timeout = timedelta(minutes=timeout_minutes or settings.packing_idle_timeout_minutes)
    outcomes: list[SweepOutcome] = []

    for order in machine.orders.list_orders(statuses=[OrderStatus.PACKING]):
        if order.packing.is_paused:
            continue
        last_activity = order.packing.last_activity_at or order.packing.started_at
        if last_activity is None:
            continue
        idle = now - as_utc(last_activity)
        if idle < timeout:
            continue

        idle_minutes = round(idle.total_seconds() / 60.0, 1)
        reason = f"Idle for {idle_minutes:g} minutes"
        try:
            if order.packed_count > 0:
                machine.pause_order(order.order_id, SYSTEM_ACTOR, reason, expected_version=order.version)
                action = "paused"
            else:
                machine.reset_order(order.order_id, SYSTEM_ACTOR, reason, expected_version=order.version)
                action = "reset"
        except AppException as exc:
            # order changed since it was listed; the next sweep sees the new state
            logger.info("Skipped idle order %s: %s", order.order_id, exc.message)
            outcomes.append(SweepOutcome(order.order_id, "skipped", idle_minutes, exc.error_code))
            continue

        logger.info("Idle sweep %s order %s after %.1f minutes", action, order.order_id, idle_minutes)
        outcomes.append(SweepOutcome(order.order_id, action, idle_minutes))

    return outcomes
