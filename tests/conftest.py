import pytest

from src.app.models.domain import Driver, Location, Vehicle, Zone
from src.app.persistence.memory import InMemoryDispatchRepository


@pytest.fixture
def repo() -> InMemoryDispatchRepository:
    """Memory store with a warehouse, two zones, two vehicles and three drivers (one inactive)."""
    store = InMemoryDispatchRepository()
    store.add_location(Location(id="WH1", name="Main Warehouse", latitude=43.65, longitude=-79.38))
    store.add_location(Location(id="WH0", name="Unmapped Depot"))
    store.add_zone(Zone(id="Z1", name="North", center_lat=43.70, center_lng=-79.40))
    store.add_zone(Zone(id="Z2", name="South", center_lat=43.60, center_lng=-79.40))
    store.add_vehicle(Vehicle(id="V1", name="Van 1", plate_number="AB-123"))
    store.add_vehicle(Vehicle(id="V2", name="Van 2", plate_number="CD-456"))
    store.add_driver(Driver(id="D1", name="Alice", vehicle_id="V1"))
    store.add_driver(Driver(id="D2", name="Bob", vehicle_id="V2"))
    store.add_driver(Driver(id="D3", name="Carol", is_active=False))
    return store
