"""Tests for the live updates WebSocket."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from fleetdispatch.config import Settings
from fleetdispatch.main import create_app
from fleetdispatch.models import ContactInfo, Delivery, Location, PackageInfo, Stop
from fleetdispatch.services.dispatch import DispatchService

API = "/api/v1"


@pytest.fixture
def client(settings: Settings, service: DispatchService) -> Iterator[TestClient]:
    app = create_app(settings=settings, service=service)
    with TestClient(app) as test_client:
        yield test_client


def _create(client: TestClient, email: str) -> str:
    delivery = Delivery(
        pickup=Stop(
            address="10 Warehouse Rd",
            coordinates=Location(lat=40.7128, lng=-74.006),
            scheduled_time="2025-06-02T10:00:00Z",
        ),
        dropoff=Stop(address="123 Main St", coordinates=Location(lat=40.73, lng=-73.98)),
        customer=ContactInfo(name=email.split("@")[0], email=email, phone="+1234567890"),
        package=PackageInfo(description="Parcel", weight=1.0),
    )
    payload = delivery.model_dump(
        mode="json", include={"pickup", "dropoff", "customer", "package"}
    )
    return client.post(f"{API}/deliveries", json=payload).json()["id"]


def _register(client: TestClient, number: str, name: str) -> tuple[str, str]:
    vehicle = client.post(f"{API}/vehicles", json={"vehicle_number": number}).json()
    driver = client.post(f"{API}/drivers", json={"name": name}).json()
    return driver["id"], vehicle["id"]


def test_ping_and_invalid_messages(client: TestClient) -> None:
    with client.websocket_connect("/ws/updates") as websocket:
        assert websocket.receive_json()["type"] == "connected"

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}

        websocket.send_text("not json")
        assert websocket.receive_json()["type"] == "error"


def test_customer_only_sees_own_deliveries(client: TestClient) -> None:
    """Test that a customer stream skips other customers' events."""
    alice_delivery = _create(client, "alice@example.com")
    bob_delivery = _create(client, "bob@example.com")
    alice_driver, alice_van = _register(client, "VAN-101", "Alice Driver")
    bob_driver, bob_van = _register(client, "VAN-102", "Bob Driver")

    with client.websocket_connect("/ws/updates?customer_email=alice@example.com") as websocket:
        hello = websocket.receive_json()
        assert hello["filter"]["customer_email"] == "alice@example.com"

        client.post(
            f"{API}/deliveries/{bob_delivery}/assign",
            json={"driver_id": bob_driver, "vehicle_id": bob_van},
        )
        client.post(
            f"{API}/deliveries/{alice_delivery}/assign",
            json={"driver_id": alice_driver, "vehicle_id": alice_van},
        )

        status_changed = websocket.receive_json()
        assigned = websocket.receive_json()

    assert status_changed["event"] == "deliveryStatusChanged"
    assert status_changed["channel"] == "delivery-status-changed"
    assert status_changed["data"]["delivery_id"] == alice_delivery
    assert status_changed["data"]["payload"]["status"] == "assigned"
    assert assigned["event"] == "driverAssigned"
    assert assigned["data"]["payload"]["driver"]["name"] == "Alice Driver"


def test_dispatcher_follows_selected_drivers(client: TestClient) -> None:
    first_driver, _ = _register(client, "VAN-101", "Alice Driver")
    second_driver, _ = _register(client, "VAN-102", "Bob Driver")

    url = f"/ws/updates?driver_id={second_driver}&driver_id=unknown"
    with client.websocket_connect(url) as websocket:
        websocket.receive_json()

        client.post(f"{API}/drivers/{first_driver}/location", json={"lat": 1, "lng": 1})
        client.post(f"{API}/drivers/{second_driver}/location", json={"lat": 2, "lng": 2})

        message = websocket.receive_json()

    assert message["event"] == "driverLocation"
    assert message["data"]["driver_id"] == second_driver
    assert message["data"]["payload"]["lat"] == 2


def test_closing_client_releases_subscription(client: TestClient) -> None:
    with client.websocket_connect("/ws/updates") as websocket:
        websocket.receive_json()
        stats = client.get(f"{API}/stats").json()
        assert stats["subscribers"] == 1
        assert stats["websocket_connections"] == 1

    stats = client.get(f"{API}/stats").json()
    assert stats["subscribers"] == 0
    assert stats["websocket_connections"] == 0
