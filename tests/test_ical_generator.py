from datetime import date, datetime, timezone

from staysync.ical.generator import build_calendar, event_uid
from staysync.ical.parser import parse_calendar
from staysync.utils.schemas import Booking, BookingStatus, Platform


def _booking(ref, platform, arrival, departure, **kw):
    return Booking(
        booking_id=f"id-{ref}",
        accommodation_id="acc-1",
        arrival_date=arrival,
        departure_date=departure,
        reference=ref,
        platform=platform,
        **kw,
    )


def _three_platforms():
    return [
        _booking("D1", Platform.DIRECTE, date(2025, 6, 1), date(2025, 6, 4), client_last_name="Martin"),
        _booking("O1", Platform.OPENPRO, date(2025, 6, 10), date(2025, 6, 12)),
        _booking("B1", Platform.BOOKING_COM, date(2025, 6, 20), date(2025, 6, 25)),
    ]


def test_excluded_platform_is_not_exported():
    out = build_calendar(_three_platforms(), {Platform.BOOKING_COM})
    assert out.startswith("BEGIN:VCALENDAR\r\n")
    assert out.endswith("END:VCALENDAR\r\n")
    assert out.count("BEGIN:VEVENT") == 2
    assert "B1" not in out


def test_export_uses_date_only_values_and_round_trips():
    out = build_calendar(_three_platforms(), {Platform.BOOKING_COM})
    assert "DTSTART;VALUE=DATE:20250601" in out
    assert "DTEND;VALUE=DATE:20250604" in out
    events = list(parse_calendar(out))
    assert [(e.start_date, e.end_date) for e in events] == [
        (date(2025, 6, 1), date(2025, 6, 4)),
        (date(2025, 6, 10), date(2025, 6, 12)),
    ]
    assert events[0].uid == event_uid("D1", Platform.DIRECTE)


def test_export_is_deterministic():
    rows = _three_platforms()
    first = build_calendar(rows, {Platform.AIRBNB})
    second = build_calendar(list(reversed(rows)), {Platform.AIRBNB})
    assert first == second


def test_uid_depends_only_on_reference_and_platform():
    assert event_uid("R-1", Platform.BOOKING_COM) == "R-1-booking-com@staysync"
    assert event_uid("R-1", Platform.BOOKING_COM) != event_uid("R-1", Platform.AIRBNB)


def test_cancelled_bookings_are_left_out():
    rows = [
        _booking("C1", Platform.DIRECTE, date(2025, 7, 1), date(2025, 7, 3), status=BookingStatus.CANCELLED),
        _booking("Q1", Platform.DIRECTE, date(2025, 7, 5), date(2025, 7, 6), status=BookingStatus.QUOTE),
    ]
    out = build_calendar(rows, set())
    assert out.count("BEGIN:VEVENT") == 1
    assert "Q1" in out


def test_dtstamp_comes_from_creation_time():
    created = datetime(2025, 3, 2, 9, 30, tzinfo=timezone.utc)
    out = build_calendar(
        [_booking("S1", Platform.DIRECTE, date(2025, 6, 1), date(2025, 6, 2), created_at=created)], set()
    )
    assert "DTSTAMP:20250302T093000Z" in out
    bare = build_calendar([_booking("S2", Platform.DIRECTE, date(2025, 6, 1), date(2025, 6, 2))], set())
    assert "DTSTAMP:19700101T000000Z" in bare


def test_special_characters_are_escaped():
    row = _booking("E1", Platform.DIRECTE, date(2025, 8, 1), date(2025, 8, 2), client_last_name="Roux, Anne; Sàrl")
    out = build_calendar([row], set(), calendar_name="Gîte, Lilas")
    assert "SUMMARY:Réservation E1 - Roux\\, Anne\\; Sàrl" in out
    assert "X-WR-CALNAME:Gîte\\, Lilas" in out
    ev = next(iter(parse_calendar(out)))
    assert ev.summary == "Réservation E1 - Roux, Anne; Sàrl"


def test_long_summary_survives_folding():
    row = _booking("L1", Platform.DIRECTE, date(2025, 8, 1), date(2025, 8, 8), client_first_name="Jean-Baptiste", client_last_name="de la Fontaine-Villeneuve " * 3)
    out = build_calendar([row], set(), calendar_name="Gîte des Lilas (Airbnb)")
    assert all(len(l.encode("utf-8")) <= 75 for l in out.split("\r\n"))
    ev = next(iter(parse_calendar(out)))
    assert ev.summary.startswith("Réservation L1 - Jean-Baptiste de la Fontaine-Villeneuve")
