"""Delivery schedule derived from the origin country's local business hours.

A shipment accepted during business hours (08:00 to 21:00 local) starts
moving an hour later; outside them it starts at 08:00 the next morning. It
goes out for delivery at 08:00 local on the day after that, and is delivered
at 10:00 the same day. Unknown countries are scheduled in UTC.
"""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel

COUNTRY_TIMEZONES: dict[str, str] = {
    "nigeria": "Africa/Lagos",
    "ng": "Africa/Lagos",
    "usa": "America/New_York",
    "us": "America/New_York",
    "united states": "America/New_York",
    "uk": "Europe/London",
    "gb": "Europe/London",
    "united kingdom": "Europe/London",
    "china": "Asia/Shanghai",
    "cn": "Asia/Shanghai",
    "dubai": "Asia/Dubai",
    "uae": "Asia/Dubai",
    "ae": "Asia/Dubai",
}

BUSINESS_DAY_START = time(8)
BUSINESS_DAY_END = time(21)
OUT_FOR_DELIVERY_TIME = time(8)
DELIVERY_TIME = time(10)


class DeliverySchedule(BaseModel):
    transit_at: datetime
    out_for_delivery_at: datetime
    delivery_at: datetime


def resolve_timezone(country: str | None) -> ZoneInfo | timezone:
    name = COUNTRY_TIMEZONES.get((country or "").strip().lower())
    if name is None:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        return timezone.utc


def _at(day: datetime, wall: time, tz) -> datetime:
    return datetime.combine(day.date(), wall, tzinfo=tz)


def calculate_schedule(now: datetime, origin_country: str | None) -> DeliverySchedule:
    """Compute the UTC due times for a shipment accepted at `now`."""
    tz = resolve_timezone(origin_country)
    local_now = now.astimezone(tz)

    if local_now.time() < BUSINESS_DAY_START:
        transit = _at(local_now, BUSINESS_DAY_START, tz)
    elif local_now.time() >= BUSINESS_DAY_END:
        transit = _at(local_now + timedelta(days=1), BUSINESS_DAY_START, tz)
    else:
        transit = local_now + timedelta(hours=1)

    delivery_day = transit + timedelta(days=1)
    return DeliverySchedule(
        transit_at=transit.astimezone(timezone.utc),
        out_for_delivery_at=_at(delivery_day, OUT_FOR_DELIVERY_TIME, tz).astimezone(timezone.utc),
        delivery_at=_at(delivery_day, DELIVERY_TIME, tz).astimezone(timezone.utc),
    )
