from datetime import date, datetime
from typing import Iterator, Optional, Union

import structlog
from icalendar import Calendar
from pydantic import BaseModel

from ..errors import ParseError

logger = structlog.get_logger(__name__)


class IcalEvent(BaseModel):
    uid: str
    summary: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    start_date: date
    end_date: date

    @property
    def cancelled(self) -> bool:
        return (self.status or "").upper() == "CANCELLED"


def _as_date(prop) -> Optional[date]:
    value = getattr(prop, "dt", None)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _text(prop) -> Optional[str]:
    if prop is None:
        return None
    s = str(prop).strip()
    return s or None


def _event_from_component(component) -> Optional[IcalEvent]:
    uid = _text(component.get("UID"))
    start = _as_date(component.get("DTSTART"))
    end = _as_date(component.get("DTEND"))
    if not uid or start is None or end is None or end <= start:
        return None
    return IcalEvent(
        uid=uid,
        summary=_text(component.get("SUMMARY")),
        description=_text(component.get("DESCRIPTION")),
        status=(_text(component.get("STATUS")) or "").upper() or None,
        start_date=start,
        end_date=end,
    )


class ParsedCalendar:
    """
    Events of one calendar document.

    Iterating yields one IcalEvent per well-formed VEVENT; the sequence can
    be iterated any number of times. VEVENTs missing a UID, with missing or
    unparsable dates, or ending on/before their start are skipped.
    """

    def __init__(self, calendar: Calendar):
        self._calendar = calendar

    def __iter__(self) -> Iterator[IcalEvent]:
        for component in self._calendar.walk("VEVENT"):
            ev = _event_from_component(component)
            if ev is None:
                logger.debug("ical_event_skipped", uid=_text(component.get("UID")))
                continue
            yield ev

    @property
    def name(self) -> Optional[str]:
        return _text(self._calendar.get("X-WR-CALNAME"))


def parse_calendar(raw: Union[str, bytes]) -> ParsedCalendar:
    """Validate the VCALENDAR envelope of ``raw``. Raises ParseError."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw or not raw.strip():
        raise ParseError("empty calendar document")
    try:
        cal = Calendar.from_ical(raw)
    except (ValueError, IndexError, KeyError) as e:
        raise ParseError(f"unparsable calendar document: {e}") from e
    if getattr(cal, "name", None) != "VCALENDAR":
        raise ParseError("document is not wrapped in VCALENDAR")
    return ParsedCalendar(cal)
