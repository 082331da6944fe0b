"""
Tests for the httpx booking backend adapter and its wire parsing.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone

import httpx
import pytest
import respx

from availability_coordinator.application.exceptions import (
    AuthenticationRequiredError,
    BackendContractError,
    BackendRequestError,
    BackendTransportError,
)
from availability_coordinator.domain.entities.selection_key import AppointmentMode, SelectionKey
from availability_coordinator.domain.entities.waitlist import WaitlistRequest
from availability_coordinator.infrastructure.backend.http_backend import HttpBookingBackend

BASE = "https://booking.test"
SLOT = datetime(2024, 5, 6, 17, 0, tzinfo=timezone.utc)

SUMMARY_PAYLOAD = {
    "ok": True,
    "mode": "SUMMARY",
    "mediaId": None,
    "serviceId": "svc_s",
    "professionalId": "pro_p",
    "serviceName": "Silk Press",
    "locationType": "SALON",
    "locationId": "loc_p",
    "timeZone": "America/New_York",
    "stepMinutes": 30,
    "leadTimeMinutes": 60,
    "durationMinutes": 90,
    "maxDaysAhead": 30,
    "primaryPro": {
        "id": "pro_p",
        "businessName": "Studio P",
        "offeringId": "off_p",
        "timeZone": "America/Chicago",
    },
    "availableDays": [{"date": "2024-05-06", "slotCount": 3}, {"date": "2024-05-07", "slotCount": 0}],
    "otherPros": [{"id": "pro_b", "offeringId": "off_b", "locationId": "loc_b", "distanceMiles": 2.5}],
    "waitlistSupported": True,
    "offering": {"id": "off_p", "offersInSalon": True, "offersMobile": False},
}


def _backend() -> HttpBookingBackend:
    return HttpBookingBackend(base_url=BASE, api_token="tok")


def _key() -> SelectionKey:
    return SelectionKey(
        professional_id="pro_p",
        service_id="svc_s",
        appointment_mode=AppointmentMode.IN_PERSON,
        viewer_location_bias=(40.712776, -74.005974),
    )


def test_base_url_is_required():
    """Without a base URL the HTTP adapter refuses to start."""
    with pytest.raises(ValueError):
        HttpBookingBackend(base_url="")


@pytest.mark.asyncio
@respx.mock
async def test_summary_request_and_parse():
    """Summary calls send wire params and parse into a domain summary."""
    route = respx.get(f"{BASE}/api/availability/day").respond(200, json=SUMMARY_PAYLOAD)
    backend = _backend()

    summary = await backend.get_availability_summary(_key())

    params = route.calls.last.request.url.params
    assert params["locationType"] == "SALON"
    assert params["viewerLat"] == "40.7128"
    assert params["viewerLng"] == "-74.0060"
    assert "date" not in params
    assert route.calls.last.request.headers["Authorization"] == "Bearer tok"

    assert summary.mode is AppointmentMode.IN_PERSON
    assert summary.allowed_modes.only_mode() is AppointmentMode.IN_PERSON
    assert summary.days[1].date == date(2024, 5, 7)
    assert summary.days[1].open_slot_count == 0
    assert summary.primary.location_id == "loc_p"
    assert summary.primary.time_zone == "America/Chicago"
    assert summary.secondaries[0].distance_miles == 2.5
    assert summary.offering_id == "off_p"
    assert summary.waitlist_supported
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_malformed_summary_is_contract_error():
    """A success payload missing required fields is rejected."""
    respx.get(f"{BASE}/api/availability/day").respond(200, json={"ok": True, "mode": "SUMMARY"})
    backend = _backend()

    with pytest.raises(BackendContractError):
        await backend.get_availability_summary(_key())
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_day_slots_collapse_duplicate_instants():
    """The same instant in two spellings appears once, in server order."""
    route = respx.get(f"{BASE}/api/availability/day").respond(
        200,
        json={
            "ok": True,
            "mode": "DAY",
            "professionalId": "pro_p",
            "date": "2024-05-06",
            "timeZone": "America/New_York",
            "slots": ["2024-05-06T13:00:00.000Z", "2024-05-06T09:00:00-04:00", "2024-05-06T14:00:00Z"],
        },
    )
    backend = _backend()

    day = await backend.get_day_slots("pro_p", "svc_s", AppointmentMode.MOBILE, date(2024, 5, 6), "loc_p")

    params = route.calls.last.request.url.params
    assert params["date"] == "2024-05-06"
    assert params["locationId"] == "loc_p"
    assert params["locationType"] == "MOBILE"
    assert day.slots == (
        datetime(2024, 5, 6, 13, 0, tzinfo=timezone.utc),
        datetime(2024, 5, 6, 14, 0, tzinfo=timezone.utc),
    )
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_unauthorized_raises_login_signal():
    """401 from any call becomes AuthenticationRequiredError."""
    respx.get(f"{BASE}/api/availability/day").respond(401, json={"ok": False, "error": "Unauthorized"})
    backend = _backend()

    with pytest.raises(AuthenticationRequiredError):
        await backend.get_availability_summary(_key())
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_error_message_prefers_server_text():
    """The server's error field wins over the generic status message."""
    respx.post(f"{BASE}/api/holds").respond(409, json={"ok": False, "error": "Someone else grabbed that time."})
    backend = _backend()

    with pytest.raises(BackendRequestError) as exc:
        await backend.create_hold("off_p", SLOT, AppointmentMode.IN_PERSON, "loc_p")

    assert exc.value.message == "Someone else grabbed that time."
    assert exc.value.status_code == 409
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_error_message_falls_back_to_status():
    """Without a server message the status code is reported."""
    respx.post(f"{BASE}/api/holds").respond(500, text="upstream exploded")
    backend = _backend()

    with pytest.raises(BackendRequestError) as exc:
        await backend.create_hold("off_p", SLOT, AppointmentMode.IN_PERSON)

    assert exc.value.message == "Hold failed (500)."
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_transport_failure():
    """Network errors become a generic transport error."""
    respx.get(f"{BASE}/api/availability/day").mock(side_effect=httpx.ConnectError("boom"))
    backend = _backend()

    with pytest.raises(BackendTransportError) as exc:
        await backend.get_availability_summary(_key())

    assert exc.value.message == "Network error. Please try again."
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_create_hold_nested_shape():
    """The nested hold payload is parsed with server-issued expiry and mode."""
    route = respx.post(f"{BASE}/api/holds").respond(
        200,
        json={
            "ok": True,
            "hold": {
                "id": "hold_1",
                "scheduledFor": "2024-05-06T17:00:00.000Z",
                "expiresAt": "2024-05-06T12:10:00.000Z",
                "locationType": "MOBILE",
            },
        },
    )
    backend = _backend()

    hold = await backend.create_hold("off_p", SLOT, AppointmentMode.MOBILE, "loc_p")

    sent = json.loads(route.calls.last.request.content)
    assert sent == {
        "offeringId": "off_p",
        "scheduledFor": "2024-05-06T17:00:00Z",
        "locationType": "MOBILE",
        "locationId": "loc_p",
    }
    assert hold.hold_id == "hold_1"
    assert hold.slot_instant == SLOT
    assert hold.expires_at == datetime(2024, 5, 6, 12, 10, tzinfo=timezone.utc)
    assert hold.appointment_mode is AppointmentMode.MOBILE
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_create_hold_flat_shape():
    """The flat holdId/holdUntil payload falls back to the requested slot and mode."""
    expires = datetime(2024, 5, 6, 12, 10, tzinfo=timezone.utc)
    respx.post(f"{BASE}/api/holds").respond(
        200,
        json={"ok": True, "holdId": "hold_2", "holdUntil": int(expires.timestamp() * 1000)},
    )
    backend = _backend()

    hold = await backend.create_hold("off_p", SLOT, AppointmentMode.IN_PERSON)

    assert hold.hold_id == "hold_2"
    assert hold.slot_instant == SLOT
    assert hold.expires_at == expires
    assert hold.appointment_mode is AppointmentMode.IN_PERSON
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_create_hold_without_id_is_contract_error():
    """A success response with no hold in it cannot be trusted."""
    respx.post(f"{BASE}/api/holds").respond(200, json={"ok": True})
    backend = _backend()

    with pytest.raises(BackendContractError):
        await backend.create_hold("off_p", SLOT, AppointmentMode.IN_PERSON)
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_get_hold_missing_or_expired_is_none():
    """404 and 409 both mean the hold is gone."""
    respx.get(f"{BASE}/api/holds/gone").respond(404, json={"ok": False, "error": "Hold not found."})
    respx.get(f"{BASE}/api/holds/old").respond(409, json={"ok": False, "error": "Hold expired."})
    backend = _backend()

    assert await backend.get_hold("gone") is None
    assert await backend.get_hold("old") is None
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_get_hold_server_error_propagates():
    """Anything other than missing is a real failure."""
    respx.get(f"{BASE}/api/holds/h").respond(500, json={"ok": False})
    backend = _backend()

    with pytest.raises(BackendRequestError):
        await backend.get_hold("h")
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_delete_hold_ignores_not_found():
    """Deleting an already-gone hold is fine."""
    route = respx.delete(f"{BASE}/api/holds/gone").respond(404, json={"ok": False})
    backend = _backend()

    await backend.delete_hold("gone")

    assert route.called
    await backend.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_join_waitlist_payload():
    """Waitlist joins send the desired instant in UTC and parse the created entry."""
    route = respx.post(f"{BASE}/api/waitlist").respond(
        200,
        json={
            "ok": True,
            "entry": {
                "id": "wl_1",
                "professionalId": "pro_p",
                "serviceId": "svc_s",
                "preferredStart": "2024-05-08T13:00:00.000Z",
                "preferredEnd": "2024-05-08T15:00:00.000Z",
            },
        },
    )
    backend = _backend()
    request = WaitlistRequest(
        professional_id="pro_p",
        service_id="svc_s",
        desired_for=datetime(2024, 5, 8, 14, 0, tzinfo=timezone.utc),
        flexibility_minutes=60,
        media_id="media_1",
    )

    entry = await backend.join_waitlist(request)

    sent = json.loads(route.calls.last.request.content)
    assert sent["desiredFor"] == "2024-05-08T14:00:00Z"
    assert sent["flexibilityMinutes"] == 60
    assert sent["mediaId"] == "media_1"
    assert entry.id == "wl_1"
    assert entry.status == "ACTIVE"
    await backend.aclose()
