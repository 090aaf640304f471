"""Tests for the admin and RSVP routes."""

import dataclasses

import pytest
from fastapi.testclient import TestClient

from wedding_invites.domain.errors import DataSourceError
from wedding_invites.domain.models import Guest
from wedding_invites.infrastructure.config import SheetSettings
from wedding_invites.web import build_services, create_app
from tests.conftest import WID, InMemoryGateway


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway(
        guests=[
            Guest(name="Dana", phone="050-123-4567", sender="Yuval", send_confirmation=True),
            Guest(name="Noa", phone="0502222222", sender="Yuval"),
            Guest(name="Omer", phone="0503333333", sender="Daniel", send_confirmation=True),
        ]
    )


@pytest.fixture
def services(settings, gateway, factory):
    return build_services(settings, gateway=gateway, connection_factory=factory)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_list_senders(client) -> None:
    response = client.get("/api/admin/senders")

    assert response.status_code == 200
    assert response.json() == {"success": True, "senders": ["Yuval", "Daniel"]}


def test_list_guests_includes_unmarked(client) -> None:
    response = client.get("/api/admin/guests/Yuval")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert [g["name"] for g in data["guests"]] == ["Dana", "Noa"]
    assert data["guests"][0]["phone"] == "050-123-4567"


def test_update_send_status(client, gateway) -> None:
    response = client.post("/api/admin/update-send-status", json={"phone": "0502222222", "shouldSend": True})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Send status updated"}
    assert gateway.marks == [("guests.xlsx", "0502222222", True)]


def test_update_send_status_requires_phone(client) -> None:
    response = client.post("/api/admin/update-send-status", json={"shouldSend": True})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Phone number is required"}


def test_unconfigured_guest_sheet(settings, gateway, factory) -> None:
    settings = dataclasses.replace(settings, sheets=SheetSettings(guest_sheet_id="", response_sheet_id=""))
    services = build_services(settings, gateway=gateway, connection_factory=factory)

    with TestClient(create_app(services)) as client:
        response = client.get("/api/admin/senders")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Guest sheet not configured"}


def test_sheet_errors_hide_details_unless_debug(settings, gateway, factory) -> None:
    gateway.error = DataSourceError("quota exceeded")

    quiet = build_services(settings, gateway=gateway, connection_factory=factory)
    with TestClient(create_app(quiet)) as client:
        body = client.get("/api/admin/senders").json()
    assert body == {"success": False, "error": "Failed to get senders"}

    loud = build_services(dataclasses.replace(settings, debug=True), gateway=gateway, connection_factory=factory)
    with TestClient(create_app(loud)) as client:
        body = client.get("/api/admin/guests/Yuval").json()
    assert body["error"] == "Failed to get guests"
    assert "quota exceeded" in body["details"]


def test_init_whatsapp_returns_qr_code(client, factory) -> None:
    factory.options = {"pairing_code_on_start": "2@qr-payload"}

    response = client.post("/api/admin/init-whatsapp", json={"sender": "Yuval"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "qrCode": "2@qr-payload", "ready": False}

    status = client.get("/api/admin/whatsapp-status/Yuval").json()
    assert status == {"success": True, "ready": False, "qr": "2@qr-payload"}
    assert factory.count == 1


def test_init_whatsapp_with_saved_login(client, factory) -> None:
    factory.options = {"ready_on_start": WID}

    response = client.post("/api/admin/init-whatsapp", json={"sender": "Yuval"})

    data = response.json()
    assert data["success"] is True
    assert data["ready"] is True
    assert data["qrCode"] is None

    status = client.get("/api/admin/whatsapp-status/Yuval").json()
    assert status == {"success": True, "ready": True, "qr": None}


def test_init_whatsapp_requires_sender(client) -> None:
    response = client.post("/api/admin/init-whatsapp", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "Sender is required"


def test_init_whatsapp_times_out(client) -> None:
    response = client.post("/api/admin/init-whatsapp", json={"sender": "Yuval"})

    assert response.status_code == 504
    assert response.json()["success"] is False


def test_status_of_unknown_sender(client) -> None:
    response = client.get("/api/admin/whatsapp-status/Nobody")

    assert response.json() == {"success": True, "ready": False, "qr": None}


def test_send_invitations(client, factory) -> None:
    factory.options = {"ready_on_start": WID}

    response = client.post(
        "/api/admin/send-invitations",
        json={"sender": "Yuval", "guests": [{"name": "Dana", "phone": "050-123-4567", "addons": ""}]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert (data["total"], data["successful"], data["failed"]) == (1, 1, 0)
    assert data["details"][0]["to"] == "972501234567"
    assert factory.last.sent[0][0] == "972501234567"


def test_send_invitations_requires_guests(client) -> None:
    response = client.post("/api/admin/send-invitations", json={"sender": "Yuval"})

    assert response.status_code == 400
    assert response.json()["error"] == "Sender and guests array are required"


def test_clear_session(client, factory, services) -> None:
    factory.options = {"ready_on_start": WID}
    client.post("/api/admin/init-whatsapp", json={"sender": "Yuval"})
    services.manager.profile_dir("Yuval").mkdir(parents=True)

    response = client.delete("/api/admin/clear-session/Yuval")

    assert response.status_code == 200
    assert "Session cleared for Yuval" in response.json()["message"]
    assert not services.manager.profile_dir("Yuval").exists()
    assert factory.last.destroys == 1

    again = client.delete("/api/admin/clear-session/Yuval")
    assert again.json() == {"success": True, "message": "No session found for Yuval."}


def test_rsvp_is_recorded(client, gateway) -> None:
    response = client.post(
        "/api/rsvp",
        json={"name": "Dana", "phone": "0501234567", "isAttending": True, "numberOfGuests": "2"},
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "RSVP submitted successfully"}
    assert gateway.responses == [("responses.xlsx", "Dana", "0501234567", True, 2)]


@pytest.mark.parametrize(
    "body, error",
    [
        ({"phone": "0501234567", "isAttending": True, "numberOfGuests": 1}, "Name and phone number are required"),
        ({"name": "Dana", "phone": "0501234567", "isAttending": "yes", "numberOfGuests": 1}, "isAttending must be a boolean"),
        ({"name": "Dana", "phone": "0501234567", "isAttending": True, "numberOfGuests": -1}, "Number of guests must be a non-negative integer"),
        ({"name": "Dana", "phone": "0501234567", "isAttending": False, "numberOfGuests": "many"}, "Number of guests must be a non-negative integer"),
    ],
)
def test_rsvp_validation(client, gateway, body, error) -> None:
    response = client.post("/api/rsvp", json=body)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": error}
    assert gateway.responses == []


def test_rsvp_storage_failure(client, gateway) -> None:
    gateway.error = DataSourceError("sheet locked")

    response = client.post(
        "/api/rsvp",
        json={"name": "Dana", "phone": "0501234567", "isAttending": True, "numberOfGuests": 0},
    )

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to process RSVP. Please try again later."}


def test_init_whatsapp_reports_browser_launch_failure(client, factory) -> None:
    factory.options = {"start_error": RuntimeError("chromedriver download failed")}

    response = client.post("/api/admin/init-whatsapp", json={"sender": "Yuval"})

    assert response.status_code == 500
    data = response.json()
    assert data["success"] is False
    assert data["error"].startswith("Failed to initialize WhatsApp: ")
    assert "chromedriver download failed" in data["error"]
    assert "details" not in data


def test_clear_session_when_browser_fails_to_close(client, factory, services) -> None:
    factory.options = {"ready_on_start": WID, "destroy_error": RuntimeError("chrome process vanished")}
    client.post("/api/admin/init-whatsapp", json={"sender": "Yuval"})

    response = client.delete("/api/admin/clear-session/Yuval")

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "No session found for Yuval."}
    assert "Yuval" not in services.manager.store
    assert factory.last.destroys == 1
