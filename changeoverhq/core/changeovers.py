"""Booking records and the changeovers generated from them."""

from __future__ import annotations

import datetime as dt
import enum
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .ids import short_id

ISO_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


class ChangeoverStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    TODAY = "today"
    COMPLETED = "completed"


class GenerationOutcome(str, enum.Enum):
    NO_BOOKINGS = "no_bookings"
    UP_TO_DATE = "up_to_date"
    GENERATED = "generated"


@dataclass
class GenerationResult:
    outcome: GenerationOutcome
    changeovers: list[dict]
    generated: list[dict] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.outcome is GenerationOutcome.NO_BOOKINGS:
            return "No bookings to generate changeovers from."
        if self.outcome is GenerationOutcome.UP_TO_DATE:
            return "No new changeovers generated (already up to date)."
        return f"Generated {len(self.generated)} changeover(s)."


def is_iso_date(value: Any) -> bool:
    """True for a ``YYYY-MM-DD`` calendar date."""

    if not isinstance(value, str) or not ISO_DATE.fullmatch(value):
        return False
    try:
        dt.date.fromisoformat(value)
    except ValueError:
        return False
    return True


def classify_status(date: str, today: str) -> ChangeoverStatus:
    """Compare two ISO dates as strings; ISO order is calendar order."""

    if date == today:
        return ChangeoverStatus.TODAY
    if date < today:
        return ChangeoverStatus.COMPLETED
    return ChangeoverStatus.UPCOMING


def changeover_key(property_id: str, date: str) -> tuple[str, str]:
    return (property_id, date)


def generate_changeovers(
    bookings: Sequence[dict],
    existing: Sequence[dict],
    today: str,
) -> GenerationResult:
    """Derive one changeover per (property, checkout date).

    Candidates are checked against the existing records and against the ones
    produced earlier in the same run, so two bookings that share a checkout
    date yield a single changeover. Nothing here touches storage.
    """

    current = [dict(row) for row in existing]
    if not bookings:
        return GenerationResult(GenerationOutcome.NO_BOOKINGS, current)

    seen = {changeover_key(row["propertyId"], row["date"]) for row in current}
    generated: list[dict] = []
    for booking in bookings:
        date = booking["checkOutDate"]
        key = changeover_key(booking["propertyId"], date)
        if key in seen:
            continue
        seen.add(key)
        generated.append(
            {
                "id": f"ch-{booking['propertyId']}-{date}-{short_id()}",
                "propertyId": booking["propertyId"],
                "propertyName": booking["propertyName"],
                "date": date,
                "status": classify_status(date, today).value,
            }
        )

    if not generated:
        return GenerationResult(GenerationOutcome.UP_TO_DATE, current)

    combined = sorted(current + generated, key=lambda row: row["date"])
    return GenerationResult(GenerationOutcome.GENERATED, combined, generated)


# ----------------------------------------------------------------------
# Shape checks for persisted data
# ----------------------------------------------------------------------
def parse_booking(value: Any) -> dict | None:
    if not isinstance(value, dict):
        return None
    for name in ("id", "propertyId", "propertyName", "guestName"):
        if not isinstance(value.get(name), str):
            return None
    if not is_iso_date(value.get("checkInDate")) or not is_iso_date(value.get("checkOutDate")):
        return None
    booking = {
        "id": value["id"],
        "propertyId": value["propertyId"],
        "propertyName": value["propertyName"],
        "guestName": value["guestName"],
        "checkInDate": value["checkInDate"],
        "checkOutDate": value["checkOutDate"],
    }
    channel = value.get("channel")
    if channel is not None:
        if not isinstance(channel, str):
            return None
        booking["channel"] = channel
    return booking


def parse_changeover(value: Any) -> dict | None:
    if not isinstance(value, dict):
        return None
    for name in ("id", "propertyId", "propertyName"):
        if not isinstance(value.get(name), str):
            return None
    if not is_iso_date(value.get("date")):
        return None
    if value.get("status") not in {status.value for status in ChangeoverStatus}:
        return None
    return {
        "id": value["id"],
        "propertyId": value["propertyId"],
        "propertyName": value["propertyName"],
        "date": value["date"],
        "status": value["status"],
    }


def parse_rows(value: Any, parser) -> list[dict]:
    """Keep the well-formed rows of a stored list; anything else reads as empty."""

    if not isinstance(value, list):
        return []
    rows = []
    for entry in value:
        row = parser(entry)
        if row is not None:
            rows.append(row)
    return rows


def demo_bookings() -> list[dict]:
    return [
        {
            "id": f"bk-{short_id()}",
            "propertyId": "rose-cottage-aaaaaa",
            "propertyName": "Rose Cottage",
            "guestName": "Jamie S.",
            "checkInDate": "2026-01-05",
            "checkOutDate": "2026-01-08",
            "channel": "Booking.com",
        },
        {
            "id": f"bk-{short_id()}",
            "propertyId": "rose-cottage-aaaaaa",
            "propertyName": "Rose Cottage",
            "guestName": "Alex P.",
            "checkInDate": "2026-01-10",
            "checkOutDate": "2026-01-14",
            "channel": "Airbnb",
        },
        {
            "id": f"bk-{short_id()}",
            "propertyId": "seaview-apartment-bbbbbb",
            "propertyName": "Seaview Apartment",
            "guestName": "Taylor R.",
            "checkInDate": "2026-01-07",
            "checkOutDate": "2026-01-09",
            "channel": "Direct",
        },
    ]


def sort_by(rows: Iterable[dict], field_name: str) -> list[dict]:
    return sorted(rows, key=lambda row: row[field_name])
