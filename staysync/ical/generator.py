import re
from datetime import datetime, timezone
from typing import Iterable, Optional, Set

from icalendar import Calendar, Event

from ..utils.schemas import STATUS_EXPORTABLE, Booking, Platform

PRODID = "-//staysync//calendar export//FR"

# Fixed stamp for bookings without a creation date, so output never depends on "now".
_EPOCH_STAMP = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _slug(platform: Platform) -> str:
    return re.sub(r"[^a-z0-9]+", "-", platform.value.lower()).strip("-")


def event_uid(reference: str, platform: Platform) -> str:
    """Stable UID of an exported booking; depends only on (reference, platform)."""
    return f"{reference}-{_slug(platform)}@staysync"


def _stamp(created_at: Optional[datetime]) -> datetime:
    if created_at is None:
        return _EPOCH_STAMP
    if created_at.tzinfo is None:
        return created_at.replace(tzinfo=timezone.utc)
    return created_at.astimezone(timezone.utc)


def is_exportable(booking: Booking, excluded: Set[Platform]) -> bool:
    return STATUS_EXPORTABLE[booking.status] and booking.platform not in excluded


def _event(b: Booking) -> Event:
    reference = b.reference or b.booking_id
    summary = f"Réservation {reference}"
    if b.client_name:
        summary = f"{summary} - {b.client_name}"
    ev = Event()
    ev.add("uid", event_uid(reference, b.platform))
    ev.add("dtstamp", _stamp(b.created_at))
    ev.add("dtstart", b.arrival_date)
    ev.add("dtend", b.departure_date)
    ev.add("summary", summary)
    ev.add("description", f"Plateforme: {b.platform.value}")
    ev.add("status", "CONFIRMED")
    ev.add("transp", "OPAQUE")
    return ev


def build_calendar(
    bookings: Iterable[Booking],
    excluded: Set[Platform],
    calendar_name: Optional[str] = None,
) -> str:
    """
    iCal text for ``bookings``.

    Cancelled bookings and bookings whose platform is in ``excluded`` are
    left out. The same input always produces byte-identical output.
    """
    kept = [b for b in bookings if is_exportable(b, excluded)]
    kept.sort(key=lambda b: (b.arrival_date, b.reference or b.booking_id))

    cal = Calendar()
    cal.add("version", "2.0")
    cal.add("prodid", PRODID)
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")
    if calendar_name:
        cal.add("x-wr-calname", calendar_name)
    for b in kept:
        cal.add_component(_event(b))
    return cal.to_ical().decode("utf-8")
