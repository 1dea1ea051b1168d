import asyncio
from datetime import date

import pytest

from conftest import SUPPLIER, dossier
from staysync.context import RequestContext
from staysync.errors import Cancelled, UpstreamError
from staysync.services.booking_merger import BookingMerger, dossiers_to_bookings, merge_bookings
from staysync.utils.schemas import Accommodation, Booking, BookingStatus, Platform


def _b(booking_id, ref, arrival, platform=Platform.OPENPRO, **kw):
    return Booking(
        booking_id=booking_id,
        accommodation_id="acc-1",
        arrival_date=arrival,
        departure_date=date(arrival.year, arrival.month, arrival.day + 2),
        reference=ref,
        platform=platform,
        **kw,
    )


def test_same_key_yields_one_record_with_local_id():
    local = [_b("local-1", "R1", date(2025, 6, 1), client_email="old@example.com")]
    remote = [_b("openpro-R1", "R1", date(2025, 6, 1), client_email="new@example.com", total_amount=320.0)]
    merged = merge_bookings(local, remote)
    assert len(merged) == 1
    assert merged[0].booking_id == "local-1"
    assert merged[0].client_email == "new@example.com"
    assert merged[0].total_amount == 320.0


def test_remote_gaps_keep_local_values():
    local = [_b("local-1", "R1", date(2025, 6, 1), client_phone="0600")]
    remote = [_b("openpro-R1", "R1", date(2025, 6, 1))]
    assert merge_bookings(local, remote)[0].client_phone == "0600"


def test_local_cancellation_wins():
    local = [_b("local-1", "R1", date(2025, 6, 1), status=BookingStatus.CANCELLED)]
    remote = [_b("openpro-R1", "R1", date(2025, 6, 3))]
    merged = merge_bookings(local, remote)
    assert len(merged) == 1
    assert merged[0].status == BookingStatus.CANCELLED
    assert merged[0].arrival_date == date(2025, 6, 1)


def test_unkeyed_and_other_platform_records_are_kept():
    local = [_b("local-1", "R1", date(2025, 6, 5), platform=Platform.AIRBNB)]
    remote = [_b("openpro-x", None, date(2025, 6, 9)), _b("openpro-R1", "R1", date(2025, 6, 1))]
    merged = merge_bookings(local, remote)
    assert [m.booking_id for m in merged] == ["openpro-R1", "local-1", "openpro-x"]


def test_ties_sorted_by_reference():
    remote = [_b("b", "B", date(2025, 6, 1)), _b("a", "A", date(2025, 6, 1))]
    assert [m.reference for m in merge_bookings([], remote)] == ["A", "B"]


def test_dossiers_map_to_bookings():
    acc = Accommodation(id="acc-1", name="Gîte", external_ids={Platform.OPENPRO: "77"})
    payload = {
        "listeDossier": [
            dossier(1, 77, "2025-06-01", "2025-06-04", prenom="Léa", nom="Roux"),
            dossier(2, 77, "2025-06-10", "2025-06-12", statut="annule"),
            dossier(3, 99, "2025-06-10", "2025-06-12"),
            {"cleDossier": {"idDossier": 4}, "listeHebergement": []},
        ]
    }
    rows = dossiers_to_bookings(payload, acc)
    assert [r.reference for r in rows] == ["1", "2"]
    assert rows[0].platform == Platform.OPENPRO
    assert rows[0].client_name == "Léa Roux"
    assert rows[0].currency == "EUR"
    assert rows[1].status == BookingStatus.CANCELLED


def test_merger_loads_both_sources(repos, fake_api):
    acc = repos.accommodations.create("Gîte", {Platform.OPENPRO: "77"})
    fake_api.dossiers[77] = [dossier(1, 77, "2025-06-01", "2025-06-04")]
    merger = BookingMerger(repos.bookings, fake_api, SUPPLIER)
    rows = asyncio.run(merger.load(acc, RequestContext()))
    assert [r.reference for r in rows] == ["1"]


def test_merger_without_remote_id_reads_local_only(repos, fake_api):
    acc = repos.accommodations.create("Studio")
    rows = asyncio.run(BookingMerger(repos.bookings, fake_api, SUPPLIER).load(acc, RequestContext()))
    assert rows == []
    assert fake_api.calls == []


def test_merger_propagates_failures(repos, fake_api):
    acc = repos.accommodations.create("Gîte", {Platform.OPENPRO: "77"})
    merger = BookingMerger(repos.bookings, fake_api, SUPPLIER)
    fake_api.failing.add(77)
    with pytest.raises(UpstreamError):
        asyncio.run(merger.load(acc, RequestContext()))
    ctx = RequestContext()
    ctx.cancel.cancel()
    with pytest.raises(Cancelled):
        asyncio.run(merger.load(acc, ctx))
