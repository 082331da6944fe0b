from functools import lru_cache
import logging

from availability_coordinator.core.config import settings
from availability_coordinator.application.ports.booking_backend import BookingBackendPort
from availability_coordinator.application.use_cases.availability_cache import AvailabilityCache
from availability_coordinator.application.use_cases.booking_session import BookingSession, DrawerContext
from availability_coordinator.infrastructure.backend.http_backend import HttpBookingBackend
from availability_coordinator.infrastructure.backend.mock_backend import MockBookingBackend

DEMO_PROFESSIONAL_ID = "pro_demo"


@lru_cache
def get_backend() -> BookingBackendPort:
    logger = logging.getLogger(__name__)
    logger.info("ENV=%s", settings.ENV)

    if not settings.BOOKING_API_BASE_URL or settings.ENV.lower() in {"dev", "local"}:
        logger.info("Using MockBookingBackend (base URL missing or ENV=dev/local)")
        backend = MockBookingBackend()
        backend.seed_demo_week(DEMO_PROFESSIONAL_ID)
        return backend

    logger.info("Using HttpBookingBackend base_url=%s", settings.BOOKING_API_BASE_URL)
    return HttpBookingBackend(
        base_url=settings.BOOKING_API_BASE_URL,
        api_token=settings.BOOKING_API_TOKEN,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )


def get_availability_cache() -> AvailabilityCache:
    # One cache per session: it is discarded when the drawer closes.
    return AvailabilityCache(get_backend())


def open_booking_session(context: DrawerContext) -> BookingSession:
    backend = get_backend()
    return BookingSession(context=context, backend=backend, cache=get_availability_cache())
