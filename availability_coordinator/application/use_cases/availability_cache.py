from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Generic, TypeVar

from availability_coordinator.application.exceptions import CoordinatorError
from availability_coordinator.application.ports.booking_backend import BookingBackendPort
from availability_coordinator.core.config import settings
from availability_coordinator.domain.entities.availability import AvailabilitySummary, ProfessionalCard
from availability_coordinator.domain.entities.selection_key import SelectionKey

T = TypeVar("T")


def _selection_part(cache_key: str) -> str:
    # "summary|<key>" and "day|<key>|date=...|location=..." both map to "<key>"
    body = cache_key.split("|", 1)[-1]
    return body.split("|date=", 1)[0]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: str
    stored_at: float  # monotonic seconds
    payload: T


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    payload: T | None
    error: CoordinatorError | None = None
    from_cache: bool = False
    stale: bool = False
    # Set when a stale payload was served while a refresh runs in the background.
    revalidating: asyncio.Future[FetchResult[T]] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.payload is not None


@dataclass(frozen=True)
class DayFanOut:
    day: date
    primary_slots: tuple[datetime, ...] = ()
    secondary_slots: dict[str, tuple[datetime, ...]] = field(default_factory=dict)
    error: CoordinatorError | None = None  # primary branch only


class AvailabilityCache:
    """
    Session-scoped availability fetcher.

    Entries are served without a request while younger than the TTL. Older entries
    are served immediately and refreshed in the background. At most one request per
    key is ever in flight; later callers attach to it. No new request is issued
    for a key (forced or stale) when one completed within the throttle window and
    data is cached.
    """

    def __init__(
        self,
        backend: BookingBackendPort,
        ttl_seconds: float | None = None,
        throttle_seconds: float | None = None,
        bias_decimals: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._ttl = settings.AVAILABILITY_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._throttle = settings.AVAILABILITY_THROTTLE_SECONDS if throttle_seconds is None else throttle_seconds
        self._bias_decimals = settings.LOCATION_BIAS_DECIMALS if bias_decimals is None else bias_decimals
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._in_flight: dict[str, asyncio.Future[FetchResult[Any]]] = {}
        self._completed_at: dict[str, float] = {}
        self._logger = logging.getLogger(__name__)

    def summary_key(self, key: SelectionKey) -> str:
        return f"summary|{key.cache_key(self._bias_decimals)}"

    def day_key(self, key: SelectionKey, day: date, location_id: str | None = None) -> str:
        return f"day|{key.cache_key(self._bias_decimals)}|date={day.isoformat()}|location={location_id or ''}"

    def peek(self, cache_key: str) -> CacheEntry[Any] | None:
        return self._entries.get(cache_key)

    def invalidate(self, key: SelectionKey | None = None) -> None:
        if key is None:
            self._entries.clear()
            return
        selection = key.cache_key(self._bias_decimals)
        for cache_key in [k for k in self._entries if _selection_part(k) == selection]:
            del self._entries[cache_key]

    def _is_fresh(self, entry: CacheEntry[Any]) -> bool:
        return self._clock() - entry.stored_at < self._ttl

    def _throttled(self, cache_key: str) -> bool:
        completed = self._completed_at.get(cache_key)
        if completed is None or cache_key not in self._entries:
            return False
        return self._clock() - completed < self._throttle

    def _start(self, cache_key: str, loader: Callable[[], Awaitable[T]]) -> asyncio.Future[FetchResult[T]]:
        pending = self._in_flight.get(cache_key)
        if pending is not None:
            return pending
        task = asyncio.ensure_future(self._load(cache_key, loader))
        self._in_flight[cache_key] = task
        return task

    async def _load(self, cache_key: str, loader: Callable[[], Awaitable[T]]) -> FetchResult[T]:
        try:
            payload = await loader()
        except CoordinatorError as e:
            existing = self._entries.get(cache_key)
            self._logger.warning(
                "Availability fetch failed",
                extra={"cache_key": cache_key, "error": e.message},
            )
            return FetchResult(
                payload=existing.payload if existing else None,
                error=e,
                from_cache=existing is not None,
                stale=existing is not None,
            )
        finally:
            self._in_flight.pop(cache_key, None)
            self._completed_at[cache_key] = self._clock()

        self._entries[cache_key] = CacheEntry(key=cache_key, stored_at=self._clock(), payload=payload)
        return FetchResult(payload=payload)

    async def _get(
        self,
        cache_key: str,
        loader: Callable[[], Awaitable[T]],
        force_refresh: bool = False,
        revalidate_in_background: bool = True,
    ) -> FetchResult[T]:
        pending = self._in_flight.get(cache_key)
        if pending is not None:
            return await asyncio.shield(pending)

        entry = self._entries.get(cache_key)
        if entry is not None:
            fresh = self._is_fresh(entry)
            if not force_refresh and fresh:
                return FetchResult(payload=entry.payload, from_cache=True)
            # Forced or stale, a request for this key just completed: reuse what we have.
            if self._throttled(cache_key):
                return FetchResult(payload=entry.payload, from_cache=True, stale=not fresh)
            if not force_refresh and revalidate_in_background:
                refresh = self._start(cache_key, loader)
                return FetchResult(payload=entry.payload, from_cache=True, stale=True, revalidating=refresh)

        return await asyncio.shield(self._start(cache_key, loader))

    async def get_day_summaries(
        self,
        key: SelectionKey,
        force_refresh: bool = False,
    ) -> FetchResult[AvailabilitySummary]:
        """Bookable days, zone, modes and professionals for `key`."""
        return await self._get(
            self.summary_key(key),
            lambda: self._backend.get_availability_summary(key),
            force_refresh=force_refresh,
        )

    async def get_day_slots(
        self,
        key: SelectionKey,
        day: date,
        location_id: str | None = None,
        is_primary: bool = True,
    ) -> tuple[datetime, ...]:
        """
        Slot instants for `key.professional_id` on `day`.

        A failed non-primary lookup degrades to no slots; a failed primary lookup raises.
        Stale slot lists are never served: a slot that was open half a minute ago is
        not worth offering, so expired entries are refetched in the foreground unless
        a request for the same day completed within the throttle window.
        """

        async def load() -> tuple[datetime, ...]:
            day_slots = await self._backend.get_day_slots(
                key.professional_id,
                key.service_id,
                key.appointment_mode,
                day,
                location_id,
            )
            return day_slots.slots

        result = await self._get(self.day_key(key, day, location_id), load, revalidate_in_background=False)
        if result.error is None:
            return result.payload or ()

        if is_primary:
            raise result.error
        self._logger.info(
            "Secondary professional slots unavailable",
            extra={"professional_id": key.professional_id, "day": day.isoformat(), "error": result.error.message},
        )
        return ()

    async def fetch_day(self, key: SelectionKey, summary: AvailabilitySummary, day: date) -> DayFanOut:
        """
        Primary plus every secondary professional for one day, applied only once
        all branches settle.
        """
        base = replace(key, service_id=summary.service_id).with_mode(summary.mode)

        async def primary_branch() -> tuple[tuple[datetime, ...], CoordinatorError | None]:
            try:
                primary_key = replace(base, professional_id=summary.primary.id)
                return await self.get_day_slots(primary_key, day, summary.location_id, is_primary=True), None
            except CoordinatorError as e:
                return (), e

        async def secondary_branch(card: ProfessionalCard) -> tuple[str, tuple[datetime, ...]]:
            secondary_key = replace(base, professional_id=card.id)
            return card.id, await self.get_day_slots(secondary_key, day, card.location_id, is_primary=False)

        (primary_slots, error), *secondaries = await asyncio.gather(
            primary_branch(),
            *(secondary_branch(card) for card in summary.secondaries),
        )
        return DayFanOut(
            day=day,
            primary_slots=primary_slots,
            secondary_slots=dict(secondaries),
            error=error,
        )
