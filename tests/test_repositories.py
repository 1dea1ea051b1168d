from datetime import date

import pytest

from staysync.errors import NotFoundError, ValidationError
from staysync.repositories.ical_config_repo import export_url_for
from staysync.utils.schemas import Platform, RateGridCell, StockCell


def test_accommodation_ids(repos):
    acc = repos.accommodations.create("Chalet", {Platform.OPENPRO: "77", Platform.AIRBNB: "air-9"})
    assert acc.external_ids[Platform.DIRECTE] == acc.id

    loaded = repos.accommodations.load(acc.id)
    assert loaded.openpro_id == 77
    assert loaded.external_ids[Platform.AIRBNB] == "air-9"
    assert repos.accommodations.find_by_platform_id(Platform.OPENPRO, "77").id == acc.id
    assert repos.accommodations.find_by_platform_id(Platform.AIRBNB, "nope") is None

    updated = repos.accommodations.set_external_id(acc.id, Platform.OPENPRO, "78")
    assert updated.openpro_id == 78
    assert [a.id for a in repos.accommodations.list_all()] == [acc.id]


def test_accommodation_validation(repos):
    with pytest.raises(ValidationError):
        repos.accommodations.create("  ")
    with pytest.raises(ValidationError):
        repos.accommodations.create("Chalet", {Platform.OPENPRO: "abc"})
    acc = repos.accommodations.create("Chalet")
    with pytest.raises(ValidationError):
        repos.accommodations.set_external_id(acc.id, Platform.DIRECTE, "other")
    with pytest.raises(NotFoundError):
        repos.accommodations.load("missing")


def test_ical_config_roundtrip(repos):
    acc = repos.accommodations.create("Chalet")
    cfg = repos.configs.save(acc.id, Platform.BOOKING_COM, "webcal://cal.example.com/x.ics")
    assert cfg.import_url == "https://cal.example.com/x.ics"
    assert cfg.export_url == f"https://sync.example.com/api/ical/export/{acc.id}/Booking.com"

    repos.configs.save(acc.id, Platform.BOOKING_COM, "https://cal.example.com/y.ics")
    [only] = repos.configs.list_for_accommodation(acc.id)
    assert only.import_url == "https://cal.example.com/y.ics"
    assert repos.configs.delete(acc.id, Platform.BOOKING_COM)
    assert repos.configs.load(acc.id, Platform.BOOKING_COM) is None


def test_export_url_quotes_platform():
    assert export_url_for("http://h/", "a1", Platform.DIRECTE) == "http://h/api/ical/export/a1/Directe"


def test_rate_catalog_and_links(repos):
    acc = repos.accommodations.create("Chalet")
    nr = repos.rates.upsert_rate_type(12, "Non remboursable", None, 2)
    flex = repos.rates.upsert_rate_type(11, {"fr": "Flexible"}, None, 1)
    assert repos.rates.upsert_rate_type(11, {"fr": "Souple"}, None, 1) == flex

    catalog = repos.rates.list_rate_types()
    assert [rt.id for rt in catalog] == [flex, nr]
    assert catalog[0].label == {"fr": "Souple"}

    repos.rates.link_rate_type(acc.id, nr)
    repos.rates.link_rate_type(acc.id, flex)
    repos.rates.link_rate_type(acc.id, flex)
    assert repos.rates.list_links(acc.id) == [flex, nr]


def test_cells_are_replaced_whole(repos):
    acc = repos.accommodations.create("Chalet")
    flex = repos.rates.upsert_rate_type(11, "Flexible")
    d = date(2025, 6, 1)
    repos.rates.upsert_cells([RateGridCell(accommodation_id=acc.id, rate_type_id=flex, date=d, price=90.0, min_stay=3)])
    written = repos.rates.upsert_cells(
        [
            RateGridCell(accommodation_id=acc.id, rate_type_id=flex, date=d, price=95.0),
            RateGridCell(accommodation_id=acc.id, rate_type_id="unknown", date=d, price=1.0),
        ]
    )
    assert written == 1
    [cell] = repos.rates.load_cells(acc.id, d, d)
    assert (cell.price, cell.min_stay) == (95.0, None)

    repos.rates.upsert_stock([StockCell(accommodation_id=acc.id, date=d, available=2)])
    repos.rates.upsert_stock([StockCell(accommodation_id=acc.id, date=d, available=0)])
    assert [s.available for s in repos.rates.load_stock(acc.id, d, d)] == [0]


def test_only_calendar_platforms_take_an_import_url(repos):
    acc = repos.accommodations.create("Chalet")
    with pytest.raises(ValidationError):
        repos.configs.save(acc.id, Platform.OPENPRO, "https://cal.example.com/x.ics")
    assert repos.configs.save(acc.id, Platform.DIRECTE).import_url is None
