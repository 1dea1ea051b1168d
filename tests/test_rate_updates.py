import asyncio
from datetime import date

import pytest

from conftest import SUPPLIER
from staysync.context import RequestContext
from staysync.errors import UpstreamError, ValidationError
from staysync.services.rate_updates import (
    Period,
    apply_bulk_update,
    apply_stock_update,
    group_periods,
    period_to_tarif,
)
from staysync.utils.schemas import BulkUpdateRequest, DateUpdate, Platform, StockUpdate

D1, D2, D3, D4 = date(2025, 6, 1), date(2025, 6, 2), date(2025, 6, 3), date(2025, 6, 4)


def _d(d, rt="flex", price=90.0, **kw):
    return DateUpdate(date=d, rate_type_id=rt, price=price, **kw)


def test_contiguous_equal_dates_form_one_period():
    periods = group_periods([_d(D3), _d(D1), _d(D2), _d(D4, price=120.0)])
    assert [(p.debut, p.fin, p.price) for p in periods] == [(D1, D3, 90.0), (D4, D4, 120.0)]


def test_gaps_and_rate_types_split_periods():
    periods = group_periods([_d(D1), _d(D3), _d(D1, rt="nr"), _d(D2, rt="nr"), DateUpdate(date=D2, price=5.0)])
    assert [(p.rate_type_id, p.debut, p.fin) for p in periods] == [
        ("flex", D1, D1),
        ("flex", D3, D3),
        ("nr", D1, D2),
    ]


def test_last_edit_of_a_date_wins():
    [p] = group_periods([_d(D1, price=80.0), _d(D1, price=85.0)])
    assert p.price == 85.0


def test_french_field_names_are_accepted():
    d = DateUpdate.model_validate({"date": "2025-06-01", "rateTypeId": "flex", "dureeMin": 3, "arriveeAutorisee": False})
    assert (d.min_duration, d.arrival_allowed) == (3, False)


def test_period_to_tarif_defaults():
    tarif = period_to_tarif(Period("flex", D1, D3, price=None), 11)
    assert tarif == {
        "idTypeTarif": 11,
        "debut": "2025-06-01",
        "fin": "2025-06-03",
        "ouvert": True,
        "dureeMin": 1,
        "dureeMax": 30,
        "arriveeAutorisee": True,
        "departAutorise": True,
        "tarifPax": {"listeTarifPaxOccupation": []},
    }
    priced = period_to_tarif(Period("flex", D1, D1, price=95.0, min_duration=2, arrival_allowed=False), 11)
    assert priced["tarifPax"] == {"listeTarifPaxOccupation": [{"type": "defaut", "prix": 95.0}]}
    assert (priced["dureeMin"], priced["arriveeAutorisee"]) == (2, False)


def _bulk(*items):
    return BulkUpdateRequest(accommodations=[{"accommodationId": acc, "dates": dates} for acc, dates in items])


def test_bulk_update_writes_cells_then_pushes_periods(repos, fake_api):
    acc = repos.accommodations.create("Gîte", {Platform.OPENPRO: "77"})
    flex = repos.rates.upsert_rate_type(11, "Flexible", None, 1)
    req = _bulk((acc.id, [_d(D1, flex), _d(D2, flex), _d(D3, flex, min_duration=3)]))

    out = asyncio.run(apply_bulk_update(req, repos.accommodations, repos.rates, fake_api, SUPPLIER, RequestContext()))
    assert out == {"accommodations": 1, "cells": 3, "periods": 2, "skipped": []}

    cells = repos.rates.load_cells(acc.id, D1, D3)
    assert [(c.date, c.price, c.min_stay, c.max_stay) for c in cells] == [
        (D1, 90.0, 1, 30),
        (D2, 90.0, 1, 30),
        (D3, 90.0, 3, 30),
    ]
    [(remote_acc, payload)] = fake_api.rate_writes
    assert remote_acc == 77
    assert [(t["idTypeTarif"], t["debut"], t["fin"], t["dureeMin"]) for t in payload["tarifs"]] == [
        (11, "2025-06-01", "2025-06-02", 1),
        (11, "2025-06-03", "2025-06-03", 3),
    ]


def test_unknown_rate_type_rejects_before_any_write(repos, fake_api):
    acc = repos.accommodations.create("Gîte", {Platform.OPENPRO: "77"})
    flex = repos.rates.upsert_rate_type(11, "Flexible")
    req = _bulk((acc.id, [_d(D1, flex)]), (acc.id, [_d(D2, "nope")]))
    with pytest.raises(ValidationError):
        asyncio.run(apply_bulk_update(req, repos.accommodations, repos.rates, fake_api, SUPPLIER, RequestContext()))
    assert repos.rates.load_cells(acc.id, D1, D2) == []
    assert fake_api.rate_writes == []


def test_unknown_and_local_only_accommodations(repos, fake_api):
    local = repos.accommodations.create("Cabane")
    flex = repos.rates.upsert_rate_type(11, "Flexible")
    req = _bulk(("missing", [_d(D1, flex)]), (local.id, [_d(D1, flex)]))
    out = asyncio.run(apply_bulk_update(req, repos.accommodations, repos.rates, fake_api, SUPPLIER, RequestContext()))
    assert out == {"accommodations": 1, "cells": 1, "periods": 0, "skipped": ["missing"]}
    assert fake_api.rate_writes == []


def test_remote_failure_keeps_local_cells(repos, fake_api):
    acc = repos.accommodations.create("Gîte", {Platform.OPENPRO: "77"})
    flex = repos.rates.upsert_rate_type(11, "Flexible")
    fake_api.failing.add(77)
    with pytest.raises(UpstreamError):
        asyncio.run(
            apply_bulk_update(_bulk((acc.id, [_d(D1, flex)])), repos.accommodations, repos.rates, fake_api, SUPPLIER, RequestContext())
        )
    assert [c.price for c in repos.rates.load_cells(acc.id, D1, D1)] == [90.0]


def test_stock_update_is_stored_and_pushed(repos, fake_api):
    acc = repos.accommodations.create("Gîte", {Platform.OPENPRO: "77"})
    req = StockUpdate(jours=[{"date": "2025-06-01", "dispo": 2}, {"date": "2025-06-02", "dispo": 0}])
    out = asyncio.run(apply_stock_update(acc, req, repos.rates, fake_api, SUPPLIER, RequestContext()))
    assert out == {"success": True, "updated": 2, "remote": True}
    assert [(s.date, s.available) for s in repos.rates.load_stock(acc.id, D1, D2)] == [(D1, 2), (D2, 0)]
    assert fake_api.stock_writes == [
        (77, {"jours": [{"date": "2025-06-01", "dispo": 2}, {"date": "2025-06-02", "dispo": 0}]})
    ]


def test_stock_update_validation(repos, fake_api):
    acc = repos.accommodations.create("Gîte")
    with pytest.raises(ValidationError):
        asyncio.run(apply_stock_update(acc, StockUpdate(jours=[]), repos.rates, fake_api, SUPPLIER, RequestContext()))
    with pytest.raises(ValidationError):
        req = StockUpdate(jours=[{"date": "2025-06-01", "dispo": -1}])
        asyncio.run(apply_stock_update(acc, req, repos.rates, fake_api, SUPPLIER, RequestContext()))
    assert repos.rates.load_stock(acc.id, D1, D1) == []
