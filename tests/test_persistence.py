from datetime import date, datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from delivery_planner.errors import ConcurrencyConflictError, OrderNotFoundError
from delivery_planner.models.domain import Order, OrderItem, OrderStatus, RouteType
from delivery_planner.persistence.database import SupabaseSnapshotStore, check_database_health
from delivery_planner.persistence.filesystem import FileStorage
from delivery_planner.persistence.memory import InMemoryOrderStore, InMemorySnapshotStore
from delivery_planner.services.routing.models import RouteFingerprint, RouteSnapshot, SequencedStop

DAY = date(2024, 5, 1)


def _snapshot(driver_id=None, stop_ids=("O1", "O2"), rank=0) -> RouteSnapshot:
    return RouteSnapshot(
        delivery_date=DAY,
        route_type=RouteType.DELIVERY,
        driver_id=driver_id,
        stops=[
            SequencedStop(
                stop_id=stop_id,
                order_id=stop_id,
                sequence=index,
                latitude=24.7,
                longitude=46.7 + index / 100,
                area_tag="east",
                distance_from_prev_km=1.0,
                duration_from_prev_min=1.5,
                estimated_arrival=datetime(2024, 5, 1, 9, index),
            )
            for index, stop_id in enumerate(stop_ids, start=1)
        ],
        geometry=[(24.7, 46.7), (24.7, 46.71)],
        total_distance_km=2.0,
        total_duration_min=3.0,
        fingerprint=RouteFingerprint(stop_count=len(stop_ids), stop_ids_hash="s", assignment_hash="a"),
        computed_at=datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc),
        metadata={"driver_rank": rank},
    )


class FakeQuery:
    def __init__(self, table: "FakeTable", action: str = "select", payload=None) -> None:
        self.table = table
        self.action = action
        self.payload = payload
        self.filters = []
        self.row_limit = None

    def select(self, columns="*"):
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row[column] == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row[column] in values)
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def _matches(self, row) -> bool:
        return all(check(row) for check in self.filters)

    def execute(self):
        self.table.calls.append(self.action)
        if self.action == "upsert":
            keys = self.payload["on_conflict"].split(",")
            for row in self.payload["rows"]:
                self.table.rows = [
                    existing
                    for existing in self.table.rows
                    if any(existing[key] != row[key] for key in keys)
                ]
                self.table.rows.append(dict(row))
            return SimpleNamespace(data=self.payload["rows"])
        if self.action == "delete":
            removed = [row for row in self.table.rows if self._matches(row)]
            self.table.rows = [row for row in self.table.rows if not self._matches(row)]
            return SimpleNamespace(data=removed)
        rows = [row for row in self.table.rows if self._matches(row)]
        return SimpleNamespace(data=rows[: self.row_limit] if self.row_limit else rows)


class FakeTable:
    def __init__(self) -> None:
        self.rows = []
        self.calls = []

    def select(self, columns="*"):
        return FakeQuery(self).select(columns)

    def upsert(self, rows, on_conflict):
        return FakeQuery(self, "upsert", {"rows": rows, "on_conflict": on_conflict})

    def delete(self):
        return FakeQuery(self, "delete")


class FakeSupabase:
    def __init__(self) -> None:
        self.tables = {}

    def table(self, name):
        return self.tables.setdefault(name, FakeTable())


def test_file_storage_creates_run_directory(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    run_dir = storage.make_run_directory(prefix="delivery_2024-05-01")

    assert run_dir.exists()
    assert run_dir.is_dir()
    assert run_dir.parent == tmp_path / "outputs"
    assert run_dir.name.startswith("delivery_2024-05-01_")


def test_file_storage_writes_json_and_csv(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    run_dir = storage.make_run_directory()

    summary_path = run_dir / "summary.json"
    sequence_path = run_dir / "sequence.csv"

    storage.write_json(summary_path, {"hello": "world"})
    storage.write_csv(sequence_path, "a,b\n1,2\n")

    assert summary_path.read_text(encoding="utf-8") == '{\n  "hello": "world"\n}'
    assert sequence_path.read_text(encoding="utf-8") == "a,b\n1,2\n"


def _order() -> Order:
    return Order(
        order_id="O1",
        order_number="SO-1",
        delivery_date=DAY,
        status=OrderStatus.CONFIRMED,
        items=[OrderItem(item_id="I1", quantity=1)],
    )


def test_order_transaction_commits_and_bumps_version() -> None:
    store = InMemoryOrderStore([_order()])

    with store.transaction("O1", expected_version=0) as order:
        order.status = OrderStatus.PACKING

    stored = store.get("O1")
    assert stored.status is OrderStatus.PACKING
    assert stored.version == 1


def test_order_transaction_rolls_back_on_error() -> None:
    store = InMemoryOrderStore([_order()])

    with pytest.raises(RuntimeError):
        with store.transaction("O1") as order:
            order.status = OrderStatus.PACKING
            raise RuntimeError("boom")

    stored = store.get("O1")
    assert stored.status is OrderStatus.CONFIRMED
    assert stored.version == 0


def test_order_transaction_rejects_stale_version() -> None:
    store = InMemoryOrderStore([_order()])

    with pytest.raises(ConcurrencyConflictError):
        with store.transaction("O1", expected_version=3):
            pass


def test_order_store_hands_out_copies() -> None:
    store = InMemoryOrderStore([_order()])

    store.get("O1").items[0].packed = True

    assert not store.get("O1").items[0].packed
    with pytest.raises(OrderNotFoundError):
        store.get("nope")


def test_list_orders_filters_by_date_and_status() -> None:
    other = _order()
    other.order_id = "O0"
    other.status = OrderStatus.DELIVERED
    store = InMemoryOrderStore([_order(), other])

    assert [order.order_id for order in store.list_orders(delivery_date=DAY)] == ["O0", "O1"]
    assert [order.order_id for order in store.list_orders(statuses=[OrderStatus.CONFIRMED])] == ["O1"]
    assert store.list_orders(delivery_date=date(2024, 5, 2)) == []


def test_memory_snapshot_replace_swaps_whole_set() -> None:
    store = InMemorySnapshotStore()
    store.replace(DAY, RouteType.DELIVERY, [_snapshot()])

    store.replace(DAY, RouteType.DELIVERY, [_snapshot("B", rank=2), _snapshot("A", rank=1)])

    assert store.get(DAY, RouteType.DELIVERY) is None
    assert [snapshot.driver_id for snapshot in store.list(DAY, RouteType.DELIVERY)] == ["A", "B"]
    assert store.list(DAY, RouteType.PACKING) == []


def test_supabase_store_round_trips_snapshots() -> None:
    client = FakeSupabase()
    store = SupabaseSnapshotStore(client, table="route_snapshots")
    snapshot = _snapshot()

    store.replace(DAY, RouteType.DELIVERY, [snapshot])

    assert store.get(DAY, RouteType.DELIVERY) == snapshot
    row = client.table("route_snapshots").rows[0]
    assert row["driver_key"] == ""
    assert row["stop_count"] == 2
    assert row["delivery_date"] == "2024-05-01"


def test_supabase_replace_deletes_keys_missing_from_new_set() -> None:
    client = FakeSupabase()
    store = SupabaseSnapshotStore(client, table="route_snapshots")
    store.replace(DAY, RouteType.DELIVERY, [_snapshot()])

    store.replace(DAY, RouteType.DELIVERY, [_snapshot("B", ("O2",), rank=2), _snapshot("A", ("O1",), rank=1)])

    listed = store.list(DAY, RouteType.DELIVERY)
    assert [snapshot.driver_id for snapshot in listed] == ["A", "B"]
    assert store.get(DAY, RouteType.DELIVERY) is None
    assert client.table("route_snapshots").calls[-1] == "delete"


def test_database_health_reports_failures() -> None:
    class Broken:
        def table(self, name):
            raise RuntimeError("connection refused")

    assert check_database_health(FakeSupabase())
    assert not check_database_health(Broken())
    assert not check_database_health(None)
