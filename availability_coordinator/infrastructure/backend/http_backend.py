from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any
from urllib.parse import quote

import httpx

from availability_coordinator.application.dto.availability import (
    parse_day_slots,
    parse_hold,
    parse_summary,
    parse_waitlist_entry,
)
from availability_coordinator.application.exceptions import (
    AuthenticationRequiredError,
    BackendRequestError,
    BackendTransportError,
)
from availability_coordinator.application.ports.booking_backend import BookingBackendPort
from availability_coordinator.application.utils.zoned_time import instant_to_iso
from availability_coordinator.core.config import settings
from availability_coordinator.domain.entities.availability import AvailabilitySummary, DaySlots
from availability_coordinator.domain.entities.hold import Hold
from availability_coordinator.domain.entities.selection_key import AppointmentMode, SelectionKey
from availability_coordinator.domain.entities.waitlist import WaitlistEntry, WaitlistRequest

MISSING_HOLD_STATUSES = {404, 409, 410}


def pick_error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, str) and error.strip():
        return error.strip()
    return None


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class HttpBookingBackend(BookingBackendPort):
    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = (base_url or settings.BOOKING_API_BASE_URL or "").rstrip("/")
        if not self._base_url:
            raise ValueError("BOOKING_API_BASE_URL is required for the HTTP booking backend")

        self._api_token = api_token or settings.BOOKING_API_TOKEN
        self._client = client or httpx.AsyncClient(timeout=timeout or settings.HTTP_TIMEOUT_SECONDS)
        self._logger = logging.getLogger(__name__)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        failure_label: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, params=params, json=json, headers=self._headers())
        except httpx.HTTPError as e:
            self._logger.error("Booking backend unreachable", extra={"reason": f"{method} {path}", "error": str(e)})
            raise BackendTransportError() from e

        body = _safe_json(response)

        if response.status_code == 401:
            raise AuthenticationRequiredError(pick_error_message(body))

        if response.status_code >= 400 or (isinstance(body, dict) and body.get("ok") is False):
            message = pick_error_message(body) or f"{failure_label} ({response.status_code})."
            self._logger.warning(
                "Booking backend request failed",
                extra={"reason": f"{method} {path}", "status": response.status_code, "error": message},
            )
            raise BackendRequestError(message, status_code=response.status_code)

        return body

    def _summary_params(self, key: SelectionKey) -> dict[str, Any]:
        params: dict[str, Any] = {
            "professionalId": key.professional_id,
            "serviceId": key.service_id,
            "locationType": key.appointment_mode.wire_value,
        }
        if key.context_media_id:
            params["mediaId"] = key.context_media_id
        if key.viewer_location_bias is not None:
            decimals = settings.LOCATION_BIAS_DECIMALS
            lat, lng = key.viewer_location_bias
            params["viewerLat"] = f"{lat:.{decimals}f}"
            params["viewerLng"] = f"{lng:.{decimals}f}"
        return params

    async def get_availability_summary(self, key: SelectionKey) -> AvailabilitySummary:
        body = await self._request(
            "GET",
            "/api/availability/day",
            "Request failed",
            params=self._summary_params(key),
        )
        return parse_summary(body)

    async def get_day_slots(
        self,
        professional_id: str,
        service_id: str,
        mode: AppointmentMode,
        day: date,
        location_id: str | None = None,
    ) -> DaySlots:
        params: dict[str, Any] = {
            "professionalId": professional_id,
            "serviceId": service_id,
            "locationType": mode.wire_value,
            "date": day.isoformat(),
        }
        if location_id:
            params["locationId"] = location_id
        body = await self._request("GET", "/api/availability/day", "Couldn't load times", params=params)
        return parse_day_slots(body)

    async def create_hold(
        self,
        offering_id: str,
        slot_instant: datetime,
        mode: AppointmentMode,
        location_id: str | None = None,
    ) -> Hold:
        payload: dict[str, Any] = {
            "offeringId": offering_id,
            "scheduledFor": instant_to_iso(slot_instant),
            "locationType": mode.wire_value,
        }
        if location_id:
            payload["locationId"] = location_id
        body = await self._request("POST", "/api/holds", "Hold failed", json=payload)
        hold = parse_hold(body, requested_slot=slot_instant, requested_mode=mode)
        self._logger.info("Hold created", extra={"hold_id": hold.hold_id, "mode": hold.appointment_mode.value})
        return hold

    async def get_hold(self, hold_id: str) -> Hold | None:
        try:
            body = await self._request("GET", f"/api/holds/{quote(hold_id, safe='')}", "Failed to load hold")
        except BackendRequestError as e:
            if e.status_code in MISSING_HOLD_STATUSES:
                self._logger.info("Hold missing on server", extra={"hold_id": hold_id, "status": e.status_code})
                return None
            raise
        return parse_hold(body)

    async def delete_hold(self, hold_id: str) -> None:
        try:
            await self._request("DELETE", f"/api/holds/{quote(hold_id, safe='')}", "Failed to release hold")
        except BackendRequestError as e:
            if e.status_code == 404:
                return
            raise

    async def join_waitlist(self, request: WaitlistRequest) -> WaitlistEntry:
        payload = {
            "professionalId": request.professional_id,
            "serviceId": request.service_id,
            "mediaId": request.media_id,
            "desiredFor": instant_to_iso(request.desired_for) if request.desired_for else None,
            "flexibilityMinutes": request.flexibility_minutes,
            "notes": request.notes,
        }
        body = await self._request("POST", "/api/waitlist", "Waitlist failed", json=payload)
        return parse_waitlist_entry(body)
