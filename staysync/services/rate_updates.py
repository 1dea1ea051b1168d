"""
Rate and stock edits.

Edits are written to the local grid first, then sent to the remote API for
accommodations that have a remote id. Edited dates are grouped per rate type
into contiguous periods carrying identical values; each period becomes one
remote rate modification.
"""
import asyncio
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import structlog

from ..clients.openpro import RemoteApi
from ..context import RequestContext
from ..errors import NotFoundError, ValidationError
from ..repositories.accommodations_repo import AccommodationsRepo
from ..repositories.rates_repo import RatesRepo
from ..utils.schemas import (
    Accommodation,
    BulkUpdateRequest,
    DateUpdate,
    RateGridCell,
    StockCell,
    StockUpdate,
)
from .rate_types import load_catalog

logger = structlog.get_logger(__name__)

DEFAULT_MIN_STAY = 1
DEFAULT_MAX_STAY = 30


@dataclass
class Period:
    rate_type_id: str
    debut: date
    fin: date
    price: Optional[float] = None
    min_duration: Optional[int] = None
    arrival_allowed: Optional[bool] = None

    def values(self) -> tuple:
        return (self.rate_type_id, self.price, self.min_duration, self.arrival_allowed)


def _values(d: DateUpdate) -> tuple:
    return (d.rate_type_id, d.price, d.min_duration, d.arrival_allowed)


def group_periods(dates: List[DateUpdate]) -> List[Period]:
    """
    Contiguous dates of one rate type with equal values, merged into periods.

    Dates without a rate type are dropped. When a date is edited twice for
    the same rate type the last edit wins.
    """
    latest: Dict[tuple, DateUpdate] = {}
    for d in dates:
        if d.rate_type_id:
            latest[(d.rate_type_id, d.date)] = d

    periods: List[Period] = []
    for key in sorted(latest):
        d = latest[key]
        last = periods[-1] if periods else None
        if last is not None and last.values() == _values(d) and d.date == last.fin + timedelta(days=1):
            last.fin = d.date
            continue
        periods.append(Period(d.rate_type_id, d.date, d.date, d.price, d.min_duration, d.arrival_allowed))
    return periods


def period_to_tarif(period: Period, remote_rate_type_id: int) -> Dict[str, Any]:
    occupations = [] if period.price is None else [{"type": "defaut", "prix": period.price}]
    return {
        "idTypeTarif": remote_rate_type_id,
        "debut": period.debut.isoformat(),
        "fin": period.fin.isoformat(),
        "ouvert": True,
        "dureeMin": period.min_duration if period.min_duration is not None else DEFAULT_MIN_STAY,
        "dureeMax": DEFAULT_MAX_STAY,
        "arriveeAutorisee": period.arrival_allowed if period.arrival_allowed is not None else True,
        "departAutorise": True,
        "tarifPax": {"listeTarifPaxOccupation": occupations},
    }


def cells_from_updates(accommodation_id: str, dates: List[DateUpdate]) -> List[RateGridCell]:
    """Priced edits as whole cells, holding the same values the remote period gets."""
    return [
        RateGridCell(
            accommodation_id=accommodation_id,
            rate_type_id=d.rate_type_id,
            date=d.date,
            price=d.price,
            min_stay=d.min_duration if d.min_duration is not None else DEFAULT_MIN_STAY,
            max_stay=DEFAULT_MAX_STAY,
            arrival_allowed=d.arrival_allowed if d.arrival_allowed is not None else True,
            departure_allowed=True,
        )
        for d in dates
        if d.rate_type_id and d.price is not None
    ]


async def apply_bulk_update(
    req: BulkUpdateRequest,
    accommodations: AccommodationsRepo,
    rates: RatesRepo,
    api: Optional[RemoteApi],
    supplier_id: int,
    ctx: RequestContext,
) -> Dict[str, Any]:
    """
    Write edited cells of several accommodations, then push them as rate periods.

    Unknown rate types reject the whole request before anything is written.
    Unknown accommodations are skipped and listed in the result. A remote
    failure is raised after that accommodation's local cells are stored.
    """
    catalog = {rt.id: rt for rt in await load_catalog(rates)}
    unknown = sorted(
        {d.rate_type_id for item in req.accommodations for d in item.dates if d.rate_type_id}
        - set(catalog)
    )
    if unknown:
        raise ValidationError(f"unknown rate types: {', '.join(unknown)}")

    log = logger.bind(trace_id=ctx.trace_id, supplier_id=supplier_id)
    summary: Dict[str, Any] = {"accommodations": 0, "cells": 0, "periods": 0, "skipped": []}
    for item in req.accommodations:
        ctx.check()
        try:
            acc = await asyncio.to_thread(accommodations.load, item.accommodation_id)
        except NotFoundError:
            log.warning("bulk_update_unknown_accommodation", accommodation_id=item.accommodation_id)
            summary["skipped"].append(item.accommodation_id)
            continue

        cells = cells_from_updates(acc.id, item.dates)
        summary["cells"] += await asyncio.to_thread(rates.upsert_cells, cells)
        summary["accommodations"] += 1

        if api is None or acc.openpro_id is None:
            log.info("bulk_update_local_only", accommodation_id=acc.id, cells=len(cells))
            continue
        tarifs = []
        for p in group_periods(item.dates):
            remote_id = catalog[p.rate_type_id].external_rate_type_id
            if remote_id is None:
                continue
            tarifs.append(period_to_tarif(p, remote_id))
        if not tarifs:
            continue
        await api.set_rates(supplier_id, acc.openpro_id, {"tarifs": tarifs}, ctx)
        summary["periods"] += len(tarifs)
        log.info("bulk_update_pushed", accommodation_id=acc.id, periods=len(tarifs))
    return summary


async def apply_stock_update(
    accommodation: Accommodation,
    req: StockUpdate,
    rates: RatesRepo,
    api: Optional[RemoteApi],
    supplier_id: int,
    ctx: RequestContext,
) -> Dict[str, Any]:
    """Store per-day availability, then send it to the remote API."""
    if not req.jours:
        raise ValidationError("jours must not be empty")
    negative = [j.date.isoformat() for j in req.jours if j.dispo < 0]
    if negative:
        raise ValidationError(f"dispo must be zero or more: {', '.join(negative)}")

    cells = [StockCell(accommodation_id=accommodation.id, date=j.date, available=j.dispo) for j in req.jours]
    written = await asyncio.to_thread(rates.upsert_stock, cells)

    pushed = False
    if api is not None and accommodation.openpro_id is not None:
        ctx.check()
        payload = {"jours": [{"date": j.date.isoformat(), "dispo": j.dispo} for j in req.jours]}
        await api.update_stock(supplier_id, accommodation.openpro_id, payload, ctx)
        pushed = True
    logger.info(
        "stock_updated", trace_id=ctx.trace_id, accommodation_id=accommodation.id, days=written, remote=pushed
    )
    return {"success": True, "updated": written, "remote": pushed}
