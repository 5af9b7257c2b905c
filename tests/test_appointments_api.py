"""HTTP tests for the booking API."""

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from medibook.api.v1.responses import BOOKING_ERROR_STATUS
from medibook.core.exceptions import StorageError
from medibook.services.booking_types import BookingError
from tests.factories import auth_headers_for

START = "2025-03-01T10:00:00Z"


def booking_payload(doctor, start: str = START, type: str = "online") -> dict:
    return {"doctor_id": str(doctor.id), "preferred_start_time": start, "type": type}


async def create_booking(client, headers, doctor, start: str = START) -> dict:
    response = await client.post(
        "/api/v1/appointments/", json=booking_payload(doctor, start), headers=headers
    )
    assert response.status_code == 201
    return response.json()["data"]["appointment"]


@pytest.mark.asyncio
async def test_book_appointment(client: AsyncClient, auth_headers: dict, doctor, patient):

    """Test booking returns the success envelope with the pending appointment."""
    response = await client.post(
        "/api/v1/appointments/", json=booking_payload(doctor), headers=auth_headers
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    appointment = body["data"]["appointment"]
    assert appointment["status"] == "pending"
    assert appointment["user_id"] == str(patient.user_id)
    assert appointment["doctor_id"] == str(doctor.id)
    assert datetime.fromisoformat(appointment["end_time"]) == datetime.fromisoformat(
        "2025-03-01T10:30:00+00:00"
    )
    assert appointment["consultation_fee"] == 400.0
    assert appointment["confirmation_code"].startswith("APT")
    assert body["data"]["payment_url"] is None


@pytest.mark.asyncio
async def test_book_conflicting_slot(client: AsyncClient, auth_headers: dict, doctor):

    """Test an overlapping booking returns 409 with the error envelope."""
    await create_booking(client, auth_headers, doctor)

    response = await client.post(
        "/api/v1/appointments/",
        json=booking_payload(doctor, "2025-03-01T10:15:00Z"),
        headers=auth_headers,
    )

    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "time_slot_occupied"
    assert body["message"]


@pytest.mark.asyncio
async def test_book_unknown_doctor(client: AsyncClient, auth_headers: dict):

    response = await client.post(
        "/api/v1/appointments/",
        json={
            "doctor_id": "00000000-0000-0000-0000-000000000000",
            "preferred_start_time": START,
            "type": "online",
        },
        headers=auth_headers,
    )

    assert response.status_code == 404
    assert response.json()["error"] == "doctor_not_found"


@pytest.mark.asyncio
async def test_book_invalid_payload(client: AsyncClient, auth_headers: dict, doctor):

    response = await client.post(
        "/api/v1/appointments/",
        json={"doctor_id": str(doctor.id), "preferred_start_time": START, "type": "home_visit"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "ValidationError"
    assert body["details"]


@pytest.mark.asyncio
async def test_book_requires_authentication(client: AsyncClient, doctor):

    response = await client.post("/api/v1/appointments/", json=booking_payload(doctor))
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_book_with_invalid_token(client: AsyncClient, doctor):

    response = await client.post(
        "/api/v1/appointments/",
        json=booking_payload(doctor),
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_get_and_cancel_appointment(client: AsyncClient, auth_headers: dict, doctor):

    appointment = await create_booking(client, auth_headers, doctor)

    response = await client.post(
        f"/api/v1/appointments/{appointment['id']}/cancel",
        json={"reason": "patient_request", "description": "Feeling better"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"

    response = await client.get(f"/api/v1/appointments/{appointment['id']}", headers=auth_headers)
    assert response.status_code == 200
    cancellation = response.json()["data"]["cancellation_info"]
    assert cancellation["reason"] == "patient_request"


@pytest.mark.asyncio
async def test_other_patient_cannot_read(
    client: AsyncClient, auth_headers: dict, doctor, other_patient
):
    appointment = await create_booking(client, auth_headers, doctor)

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}", headers=auth_headers_for(other_patient)
    )

    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized_access"


@pytest.mark.asyncio
async def test_unknown_appointment(client: AsyncClient, auth_headers: dict):

    response = await client.get(
        "/api/v1/appointments/00000000-0000-0000-0000-000000000000", headers=auth_headers
    )
    assert response.status_code == 404
    assert response.json()["error"] == "appointment_not_found"


@pytest.mark.asyncio
async def test_reschedule_too_close(client: AsyncClient, auth_headers: dict, doctor, clock):

    appointment = await create_booking(client, auth_headers, doctor)
    clock.now = datetime.fromisoformat(appointment["start_time"]) - timedelta(minutes=90)

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/reschedule",
        json={"new_start_time": "2025-03-02T10:00:00Z"},
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert response.json()["error"] == "cannot_reschedule"


@pytest.mark.asyncio
async def test_doctor_confirms_appointment(
    client: AsyncClient, auth_headers: dict, doctor, doctor_actor
):
    appointment = await create_booking(client, auth_headers, doctor)

    denied = await client.post(
        f"/api/v1/appointments/{appointment['id']}/confirm", headers=auth_headers
    )
    assert denied.status_code == 403

    response = await client.post(
        f"/api/v1/appointments/{appointment['id']}/confirm",
        headers=auth_headers_for(doctor_actor),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "confirmed"
    assert data["consultation_info"]["link"]


@pytest.mark.asyncio
async def test_list_my_appointments(client: AsyncClient, auth_headers: dict, doctor):

    await create_booking(client, auth_headers, doctor)
    await create_booking(client, auth_headers, doctor, "2025-03-01T11:00:00Z")

    response = await client.get("/api/v1/appointments/?page=1&page_size=1", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2
    assert len(data["items"]) == 1


@pytest.mark.asyncio
async def test_list_my_appointments_when_storage_is_down(
    client: AsyncClient, auth_headers: dict, appointments
):
    appointments.fail_with = StorageError("connection refused")

    response = await client.get("/api/v1/appointments/", headers=auth_headers)

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "database_error"
    assert "connection refused" not in body["message"]


@pytest.mark.asyncio
async def test_queue_position(client: AsyncClient, auth_headers: dict, doctor):

    await create_booking(client, auth_headers, doctor)
    later = await create_booking(client, auth_headers, doctor, "2025-03-01T10:30:00Z")

    response = await client.get(f"/api/v1/appointments/{later['id']}/queue", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {
        "appointment_id": later["id"],
        "position": 1,
        "estimated_wait_minutes": 30,
    }


@pytest.mark.asyncio
async def test_doctor_availability(client: AsyncClient, auth_headers: dict, doctor):

    await create_booking(client, auth_headers, doctor)

    response = await client.get(
        f"/api/v1/doctors/{doctor.id}/availability",
        params={"start_date": "2025-03-01", "end_date": "2025-03-01", "type": "online"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    slots = response.json()["data"]
    assert len(slots) == 47
    starts = [datetime.fromisoformat(slot["start"]) for slot in slots]
    assert starts == sorted(starts)
    assert datetime.fromisoformat("2025-03-01T10:00:00+00:00") not in starts


@pytest.mark.asyncio
async def test_doctor_availability_range_too_long(client: AsyncClient, auth_headers: dict, doctor):

    response = await client.get(
        f"/api/v1/doctors/{doctor.id}/availability",
        params={"start_date": "2025-03-01", "end_date": "2025-04-15"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_doctor_schedule_visibility(
    client: AsyncClient, auth_headers: dict, doctor, doctor_actor
):
    await create_booking(client, auth_headers, doctor)

    denied = await client.get(
        f"/api/v1/doctors/{doctor.id}/schedule", params={"day": "2025-03-01"}, headers=auth_headers
    )
    assert denied.status_code == 403

    response = await client.get(
        f"/api/v1/doctors/{doctor.id}/schedule",
        params={"day": "2025-03-01"},
        headers=auth_headers_for(doctor_actor),
    )
    assert response.status_code == 200
    assert len(response.json()["data"]) == 1


@pytest.mark.asyncio
async def test_register_doctor_requires_admin(client: AsyncClient, auth_headers: dict, admin):

    payload = {
        "full_name": "Dr. Kavya Menon",
        "specialization": "Dermatology",
        "consultation_fee": "700.00",
        "weekly_availability": {"Monday": [{"start": "09:00", "end": "13:00"}]},
    }

    denied = await client.post("/api/v1/doctors/", json=payload, headers=auth_headers)
    assert denied.status_code == 403

    response = await client.post("/api/v1/doctors/", json=payload, headers=auth_headers_for(admin))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "pending_verification"
    assert list(data["weekly_availability"]) == ["monday"]


@pytest.mark.asyncio
async def test_ping(client: AsyncClient):

    response = await client.get("/api/v1/ping")
    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


def test_every_booking_error_maps_to_http_status():
    assert set(BOOKING_ERROR_STATUS) == set(BookingError) - {BookingError.SUCCESS}
