from datetime import date

import pytest

from src.app.models.domain import Driver, RouteStatus, RouteStop
from src.app.persistence.database import SupabaseDispatchRepository, _route_from_row, _stop_to_row


class FakeResponse:
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Chainable stand-in for the PostgREST query builder."""

    def __init__(self, client: "FakeClient", table: str):
        self.client = client
        self.table = table
        self.ops: list[tuple] = []

    @property
    def not_(self):
        self.ops.append(("not_",))
        return self

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self

        return method

    def execute(self):
        self.client.executed.append((self.table, self.ops))
        hook = self.client.table_hooks.get(self.table)
        if hook is not None:
            return FakeResponse(hook(self.ops))
        return FakeResponse(self.client.table_data.get(self.table, []))


class FakeRpc:
    def __init__(self, client: "FakeClient", name: str, params: dict):
        self.client = client
        self.name = name
        self.params = params

    def execute(self):
        self.client.rpc_calls.append((self.name, self.params))
        handler = self.client.rpc_handlers.get(self.name)
        if handler is not None:
            return FakeResponse(handler(self.params))
        return FakeResponse(self.client.rpc_data.get(self.name))


class FakeClient:
    def __init__(self):
        self.table_data: dict[str, list] = {}
        self.table_hooks: dict[str, object] = {}
        self.rpc_data: dict[str, object] = {}
        self.rpc_handlers: dict[str, object] = {}
        self.executed: list[tuple] = []
        self.rpc_calls: list[tuple] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict) -> FakeRpc:
        return FakeRpc(self, name, params)


class DriverClaims:
    """Mirrors reserve_dispatch_driver: one claim per driver and date, guarded by the driver version."""

    def __init__(self, client: FakeClient, versions: dict[str, int]):
        self.versions = dict(versions)
        self.claims: set[tuple[str, str]] = set()
        self.fail_flush = False
        client.rpc_handlers["reserve_dispatch_driver"] = self.reserve
        client.rpc_handlers["dispatch_apply_changes"] = self.apply
        client.table_hooks["dispatch_driver_reservations"] = self.delete

    def reserve(self, params: dict) -> bool:
        driver_id = params["p_driver_id"]
        key = (driver_id, params["p_route_date"])
        if self.versions.get(driver_id) != params["p_version"] or key in self.claims:
            return False
        self.claims.add(key)
        self.versions[driver_id] += 1
        return True

    def apply(self, params: dict) -> None:
        if self.fail_flush:
            raise RuntimeError("connection reset")
        return None

    def delete(self, ops: list[tuple]) -> list:
        filters = dict(op[1] for op in ops if op[0] == "eq")
        self.claims.discard((filters["driver_id"], filters["route_date"]))
        return []


def _stop(stop_id: str) -> RouteStop:
    return RouteStop(id=stop_id, route_id="R1", sequence_order=1, booking_id="B1")


def test_writes_inside_transaction_are_flushed_in_one_call():
    client = FakeClient()
    repo = SupabaseDispatchRepository(client)

    with repo.transaction():
        repo.save_stop(_stop("S1"))
        with repo.transaction():
            repo.save_stop(_stop("S2"))
        assert client.rpc_calls == []

    assert len(client.rpc_calls) == 1
    name, params = client.rpc_calls[0]
    assert name == "dispatch_apply_changes"
    assert [change["table"] for change in params["changes"]] == ["delivery_route_stops"] * 2
    assert [change["row"]["id"] for change in params["changes"]] == ["S1", "S2"]
    assert client.executed == []


def test_failed_transaction_discards_buffered_writes():
    client = FakeClient()
    repo = SupabaseDispatchRepository(client)

    with pytest.raises(RuntimeError):
        with repo.transaction():
            repo.save_stop(_stop("S1"))
            raise RuntimeError("boom")

    assert client.rpc_calls == []
    with repo.transaction():
        pass
    assert client.rpc_calls == []


def test_write_outside_transaction_is_sent_immediately():
    client = FakeClient()
    repo = SupabaseDispatchRepository(client)

    repo.save_stop(_stop("S1"))

    ((name, params),) = client.rpc_calls
    assert name == "dispatch_apply_changes"
    (change,) = params["changes"]
    assert change["table"] == "delivery_route_stops"
    assert change["row"]["delivery_booking_id"] == "B1"


def test_stop_row_uses_booking_column_name():
    row = _stop_to_row(_stop("S1"))

    assert row["delivery_booking_id"] == "B1"
    assert "booking_id" not in row
    assert row["status"] == "pending"


def test_route_row_parsing_trims_time_columns():
    route = _route_from_row(
        {
            "id": 7,
            "route_number": "RTE-2026-10-19-001",
            "route_date": "2026-10-19",
            "status": "optimized",
            "start_time": "08:00:00",
            "total_distance_km": "19.61",
            "created_at": "2026-10-18T12:00:00Z",
        }
    )

    assert route.id == "7"
    assert route.route_date == date(2026, 10, 19)
    assert route.status == RouteStatus.OPTIMIZED
    assert route.start_time == "08:00"
    assert route.total_distance_km == pytest.approx(19.61)
    assert route.created_at.tzinfo is not None


@pytest.mark.parametrize("data", [42, [42], [{"next_dispatch_route_number": 42}]])
def test_next_route_sequence_accepts_rpc_shapes(data):
    client = FakeClient()
    client.rpc_data["next_dispatch_route_number"] = data

    assert SupabaseDispatchRepository(client).next_route_sequence() == 42


ROUTE_DATE = date(2026, 10, 19)


def test_reserve_driver_claims_driver_for_the_date():
    client = FakeClient()
    repo = SupabaseDispatchRepository(client)
    driver = Driver(id="D1", name="Alice", version=3)

    client.rpc_data["reserve_dispatch_driver"] = False
    assert repo.reserve_driver(driver, ROUTE_DATE) is False
    assert driver.version == 3

    client.rpc_data["reserve_dispatch_driver"] = [{"reserve_dispatch_driver": True}]
    assert repo.reserve_driver(driver, ROUTE_DATE) is True
    assert driver.version == 4

    name, params = client.rpc_calls[-1]
    assert name == "reserve_dispatch_driver"
    assert params == {"p_driver_id": "D1", "p_route_date": "2026-10-19", "p_version": 3}


def test_interleaved_generators_cannot_share_a_driver():
    client = FakeClient()
    claims = DriverClaims(client, {"D1": 3})
    first = SupabaseDispatchRepository(client)
    second = SupabaseDispatchRepository(client)

    with first.transaction():
        assert first.reserve_driver(Driver(id="D1", name="Alice", version=3), ROUTE_DATE) is True
        # The second run reads the driver after the first claim but before the first run commits.
        assert second.reserve_driver(Driver(id="D1", name="Alice", version=4), ROUTE_DATE) is False
        assert second.reserve_driver(Driver(id="D1", name="Alice", version=3), ROUTE_DATE) is False

    assert claims.claims == {("D1", "2026-10-19")}
    assert second.reserve_driver(Driver(id="D1", name="Alice", version=4), date(2026, 10, 20)) is True


def test_failed_transaction_releases_its_driver_claims():
    client = FakeClient()
    claims = DriverClaims(client, {"D1": 3})
    claims.fail_flush = True
    first = SupabaseDispatchRepository(client)
    second = SupabaseDispatchRepository(client)

    with pytest.raises(RuntimeError):
        with first.transaction():
            first.reserve_driver(Driver(id="D1", name="Alice", version=3), ROUTE_DATE)
            first.save_stop(_stop("S1"))

    assert claims.claims == set()
    table, ops = client.executed[-1]
    assert table == "dispatch_driver_reservations"
    assert ("delete", (), {}) in ops

    claims.fail_flush = False
    assert second.reserve_driver(Driver(id="D1", name="Alice", version=4), ROUTE_DATE) is True


def test_release_inside_transaction_waits_for_commit():
    client = FakeClient()
    claims = DriverClaims(client, {"D1": 3})
    repo = SupabaseDispatchRepository(client)
    repo.reserve_driver(Driver(id="D1", name="Alice", version=3), ROUTE_DATE)

    claims.fail_flush = True
    with pytest.raises(RuntimeError):
        with repo.transaction():
            repo.release_driver("D1", ROUTE_DATE)
            repo.save_stop(_stop("S1"))
    assert claims.claims == {("D1", "2026-10-19")}

    claims.fail_flush = False
    with repo.transaction():
        repo.release_driver("D1", ROUTE_DATE)
        repo.save_stop(_stop("S1"))
        assert claims.claims == {("D1", "2026-10-19")}
    assert claims.claims == set()


def test_list_available_drivers_excludes_busy_drivers():
    client = FakeClient()
    client.table_data["dispatch_routes"] = [{"driver_id": "D1"}]
    client.table_data["drivers"] = [
        {"id": "D1", "name": "Alice", "is_active": True},
        {"id": "D2", "name": "Bob", "is_active": True},
    ]

    drivers = SupabaseDispatchRepository(client).list_available_drivers(date(2026, 10, 19))

    assert [driver.id for driver in drivers] == ["D2"]
