from datetime import date

import pydantic
import pytest

from staysync.errors import ValidationError
from staysync.utils.schemas import (
    PLATFORM_ORIGIN,
    STATUS_EXPORTABLE,
    STATUS_RANK,
    Accommodation,
    Booking,
    BookingCreate,
    BookingStatus,
    Platform,
    can_transition,
    forward_status,
)


def test_every_variant_is_mapped():
    assert set(STATUS_RANK) == set(BookingStatus)
    assert set(STATUS_EXPORTABLE) == set(BookingStatus)
    assert set(PLATFORM_ORIGIN) == set(Platform)


@pytest.mark.parametrize("raw", ["Booking.com", "booking.com", "BOOKING_COM", " airbnb "])
def test_platform_parse(raw):
    assert Platform.parse(raw) in (Platform.BOOKING_COM, Platform.AIRBNB)


def test_platform_parse_unknown():
    with pytest.raises(ValidationError):
        Platform.parse("Expedia")
    assert Platform.parse("Expedia", strict=False) == Platform.UNKNOWN


def test_statuses_only_move_forward():
    assert can_transition(BookingStatus.QUOTE, BookingStatus.CONFIRMED)
    assert can_transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED)
    assert can_transition(BookingStatus.CONFIRMED, BookingStatus.CONFIRMED)
    assert not can_transition(BookingStatus.CANCELLED, BookingStatus.CONFIRMED)
    assert not can_transition(BookingStatus.CONFIRMED, BookingStatus.QUOTE)
    assert forward_status(BookingStatus.CANCELLED, BookingStatus.CONFIRMED) == BookingStatus.CANCELLED


@pytest.mark.parametrize(
    "raw,expected",
    [("Devis", BookingStatus.QUOTE), ("Paid", BookingStatus.CONFIRMED), ("Past", BookingStatus.CONFIRMED), ("Cancelled", BookingStatus.CANCELLED)],
)
def test_legacy_statuses(raw, expected):
    assert BookingStatus.from_db(raw) == expected


def test_booking_dates_must_be_ordered():
    with pytest.raises(pydantic.ValidationError):
        Booking(booking_id="x", accommodation_id="a", arrival_date=date(2025, 6, 5), departure_date=date(2025, 6, 5))


def test_booking_computed_fields_are_serialized():
    b = Booking(
        booking_id="x",
        accommodation_id="a",
        arrival_date=date(2025, 6, 1),
        departure_date=date(2025, 6, 4),
        reference="R1",
        platform=Platform.AIRBNB,
        client_first_name="Ana",
        client_last_name="Lopez",
    )
    dumped = b.model_dump(by_alias=True, mode="json")
    assert dumped["numberOfNights"] == 3
    assert dumped["clientName"] == "Ana Lopez"
    assert dumped["arrivalDate"] == "2025-06-01"
    assert b.dedup_key == ("R1", Platform.AIRBNB)


def test_booking_create_accepts_camel_case():
    req = BookingCreate.model_validate(
        {"accommodationId": "a", "arrivalDate": "2025-06-01", "departureDate": "2025-06-03", "reference": "  "}
    )
    assert req.reference is None
    assert req.platform == Platform.DIRECTE
    assert req.status == BookingStatus.QUOTE


def test_accommodation_directe_id_is_its_own_id():
    acc = Accommodation(id="acc-1", name="Gîte", external_ids={Platform.OPENPRO: "123"})
    assert acc.external_ids[Platform.DIRECTE] == "acc-1"
    assert acc.openpro_id == 123
