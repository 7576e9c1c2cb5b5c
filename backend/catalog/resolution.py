"""
Resolve what is being booked from a booking request.

A request names a catalogue service, carries inline service details, or is a
custom booking with an explicit end time and price. Each path produces the
provider, the price snapshot and the end time of the booking.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from core.exceptions import InvalidRequest, ResourceMissing

from .models import Service


@dataclass(frozen=True)
class ResolvedService:
    provider_id: int
    service: Optional[Service]
    service_name: str
    price_cents: int
    time_end: time


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def end_time_after(time_start: time, duration_minutes: int) -> time:
    anchor = datetime.combine(date(2000, 1, 1), time_start)
    end = anchor + timedelta(minutes=duration_minutes)
    if end.date() != anchor.date() or end.time() == time(0, 0):
        raise InvalidRequest(
            "A booking must end on the day it starts.", code="booking_crosses_midnight"
        )
    return end.time()


def resolve_service_details(
    *,
    time_start: time,
    time_end: time | None = None,
    service_id: int | None = None,
    provider_id: int | None = None,
    service_name: str | None = None,
    service_price_cents: int | None = None,
    service_duration_minutes: int | None = None,
    custom_price_cents: int | None = None,
) -> ResolvedService:
    service = None
    if service_id is not None:
        service = Service.objects.filter(pk=service_id).first()

    if service is not None:
        if not service.active:
            raise InvalidRequest("Service is not available.", code="service_inactive")
        if provider_id is not None and provider_id != service.provider_id:
            raise InvalidRequest(
                "The service does not belong to this provider.", code="provider_mismatch"
            )
        return ResolvedService(
            provider_id=service.provider_id,
            service=service,
            service_name=service.name,
            price_cents=service.price_cents,
            time_end=time_end or end_time_after(time_start, service.duration_minutes),
        )

    has_inline_details = any(
        value is not None
        for value in (service_name, service_price_cents, service_duration_minutes)
    )
    if has_inline_details:
        if (
            not isinstance(service_name, str)
            or not service_name.strip()
            or not _is_positive_int(service_price_cents)
            or not _is_positive_int(service_duration_minutes)
        ):
            raise InvalidRequest(
                "Invalid service details. Provide service_name (non-empty), "
                "service_price_cents (>0 integer), and service_duration_minutes (>0 integer).",
                code="invalid_service_details",
            )
        if provider_id is None:
            raise InvalidRequest("Missing required field: provider.", code="missing_provider")
        return ResolvedService(
            provider_id=provider_id,
            service=None,
            service_name=service_name.strip(),
            price_cents=service_price_cents,
            time_end=time_end or end_time_after(time_start, service_duration_minutes),
        )

    if service_id is not None:
        raise ResourceMissing("Service not found.", code="service_not_found")

    if provider_id is None or time_end is None or not _is_positive_int(custom_price_cents):
        raise InvalidRequest(
            "For custom bookings: provider, time_end, and price_cents are required.",
            code="invalid_custom_booking",
        )
    return ResolvedService(
        provider_id=provider_id,
        service=None,
        service_name="Custom booking",
        price_cents=custom_price_cents,
        time_end=time_end,
    )
