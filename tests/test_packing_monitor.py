from datetime import date, datetime, timedelta, timezone

from delivery_planner.models.domain import Order, OrderItem, OrderStatus
from delivery_planner.persistence.memory import InMemoryOrderStore
from delivery_planner.services.packing.monitor import sweep_idle_orders
from delivery_planner.services.packing.pin import HashedPinPolicy
from delivery_planner.services.packing.state_machine import PackingSessionStateMachine
from delivery_planner.services.stock.store import InMemoryStockStore

START = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


class SteppingClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _order(order_id: str) -> Order:
    return Order(
        order_id=order_id,
        order_number=f"SO-{order_id}",
        delivery_date=date(2024, 5, 1),
        status=OrderStatus.CONFIRMED,
        items=[OrderItem(item_id="I1", quantity=1), OrderItem(item_id="I2", quantity=1)],
    )


def _machine(*order_ids: str):
    clock = SteppingClock(START)
    machine = PackingSessionStateMachine(
        orders=InMemoryOrderStore([_order(order_id) for order_id in order_ids]),
        stock=InMemoryStockStore(clock=clock),
        pin_policy=HashedPinPolicy(None),
        clock=clock,
    )
    return machine, clock


def test_idle_orders_are_paused_or_reset_depending_on_progress():
    machine, clock = _machine("WITH", "WITHOUT")
    machine.begin_packing("WITH", "packer")
    machine.mark_item_packed("WITH", "I1", True, "packer")
    machine.begin_packing("WITHOUT", "packer")

    outcomes = sweep_idle_orders(machine, START + timedelta(minutes=45), timeout_minutes=30)

    assert {outcome.order_id: outcome.action for outcome in outcomes} == {"WITH": "paused", "WITHOUT": "reset"}
    paused = machine.get_order("WITH")
    assert paused.packing.is_paused
    assert paused.packing.paused_by == "system"
    assert paused.find_item("I1").packed
    assert machine.get_order("WITHOUT").status is OrderStatus.CONFIRMED
    assert outcomes[0].idle_minutes == 45


def test_recent_and_paused_orders_are_left_alone():
    machine, clock = _machine("IDLE", "BUSY", "PAUSED")
    machine.begin_packing("PAUSED", "packer")
    machine.mark_item_packed("PAUSED", "I1", True, "packer")
    machine.pause_order("PAUSED", "packer", "lunch")
    machine.begin_packing("IDLE", "packer")
    machine.mark_item_packed("IDLE", "I1", True, "packer")
    clock.now = START + timedelta(minutes=25)
    machine.begin_packing("BUSY", "packer")

    outcomes = sweep_idle_orders(machine, START + timedelta(minutes=40), timeout_minutes=30)

    assert [(outcome.order_id, outcome.action) for outcome in outcomes] == [("IDLE", "paused")]
    assert machine.get_order("BUSY").status is OrderStatus.PACKING
    assert machine.get_order("PAUSED").packing.pause_reason == "lunch"


def test_naive_sweep_time_is_read_as_utc():
    machine, _ = _machine("O1", "O2")
    machine.begin_packing("O1", "packer")
    machine.mark_item_packed("O1", "I1", True, "packer")

    assert sweep_idle_orders(machine, datetime(2024, 5, 1, 8, 10), timeout_minutes=30) == []

    outcomes = sweep_idle_orders(machine, datetime(2024, 5, 1, 8, 45), timeout_minutes=30)

    assert [(outcome.order_id, outcome.action) for outcome in outcomes] == [("O1", "paused")]
    assert outcomes[0].idle_minutes == 45


def test_item_activity_refreshes_idle_timer():
    machine, clock = _machine("O1")
    machine.begin_packing("O1", "packer")
    clock.now = START + timedelta(minutes=20)
    machine.mark_item_packed("O1", "I1", True, "packer")

    assert sweep_idle_orders(machine, START + timedelta(minutes=35), timeout_minutes=30) == []
