"""
Per-accommodation rate and stock grids for a date range.

A source yields raw cells (stored rows or remote rate periods); ``build_grid``
folds them into date-indexed mappings. A date without source data is absent
from every mapping: absence means "unknown", never zero or False.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Protocol, Tuple

import structlog

from ..clients.openpro import RemoteApi
from ..context import RequestContext
from ..repositories.rates_repo import RatesRepo
from ..utils import normalize as nz
from ..utils.schemas import Accommodation, RateGridCell, RateType, StockCell
from .rate_types import explicit_label, label_of, sort_key

logger = structlog.get_logger(__name__)

MAX_LABELS_PER_DATE = 2


@dataclass
class AccommodationGrid:
    prices: Dict[str, Dict[str, float]] = field(default_factory=dict)  # rate type -> date -> price
    promo: Dict[str, bool] = field(default_factory=dict)  # date -> any promotion
    labels: Dict[str, str] = field(default_factory=dict)  # rate type -> label
    min_stay: Dict[str, Dict[str, Optional[int]]] = field(default_factory=dict)  # date -> rate type -> nights
    arrival_allowed: Dict[str, Dict[str, bool]] = field(default_factory=dict)  # date -> rate type -> bool
    stock: Dict[str, int] = field(default_factory=dict)  # date -> available
    rate_types_by_date: Dict[str, List[str]] = field(default_factory=dict)  # date -> labels


class GridSource(Protocol):
    async def load(
        self,
        accommodation: Accommodation,
        debut: date,
        fin: date,
        catalog: List[RateType],
        ctx: RequestContext,
    ) -> Tuple[List[RateGridCell], List[StockCell]]: ...


class StoredGridSource:
    """Cells previously written to accommodation_data / accommodation_stock."""

    def __init__(self, repo: RatesRepo):
        self.repo = repo

    async def load(self, accommodation, debut, fin, catalog, ctx):
        cells = await asyncio.to_thread(self.repo.load_cells, accommodation.id, debut, fin)
        stock = await asyncio.to_thread(self.repo.load_stock, accommodation.id, debut, fin)
        return cells, stock


class RemoteGridSource:
    """Rate periods and stock read live from the remote API."""

    def __init__(self, api: RemoteApi, supplier_id: int):
        self.api = api
        self.supplier_id = supplier_id

    async def load(self, accommodation, debut, fin, catalog, ctx):
        remote_id = accommodation.openpro_id
        if remote_id is None:
            return [], []
        ctx.check()
        rates = await self.api.get_rates(self.supplier_id, remote_id, debut, fin, ctx)
        ctx.check()
        stock_payload = await self.api.get_stock(self.supplier_id, remote_id, debut, fin, ctx)

        cells = tarifs_to_cells(accommodation.id, nz.tarif_list(rates), debut, fin, catalog)
        stock = [
            StockCell(accommodation_id=accommodation.id, date=d, available=qty)
            for d, qty in sorted(nz.extract_stock(stock_payload).items())
            if debut <= d <= fin
        ]
        return cells, stock


def tarifs_to_cells(
    accommodation_id: str,
    tarifs: List[dict],
    debut: date,
    fin: date,
    catalog: List[RateType],
) -> List[RateGridCell]:
    """
    Expand remote rate periods into one cell per (rate type, date), clipped
    to [debut, fin]. Rate types unknown to the catalog are keyed by their
    remote id. A later period overrides an earlier one on the same date.
    """
    by_ext = {rt.external_rate_type_id: rt for rt in catalog if rt.external_rate_type_id}
    cells: Dict[Tuple[str, date], RateGridCell] = {}
    for tarif in tarifs:
        ext = nz.tarif_rate_type_id(tarif)
        start, end = nz.tarif_dates(tarif)
        if ext is None or start is None:
            continue
        end = end or start
        rt = by_ext.get(ext)
        rt_id = rt.id if rt else str(ext)
        label = nz.extract_rate_label(tarif, explicit_label(rt) if rt else None, ext)
        for d in nz.iter_dates(max(start, debut), min(end, fin)):
            cells[(rt_id, d)] = RateGridCell(
                accommodation_id=accommodation_id,
                rate_type_id=rt_id,
                date=d,
                price=nz.extract_price(tarif),
                min_stay=nz.min_stay(tarif),
                max_stay=nz.max_stay(tarif),
                arrival_allowed=nz.arrival_allowed(tarif),
                departure_allowed=nz.departure_allowed(tarif),
                promotion_active=nz.promotion_active(tarif),
                label=label,
            )
    return [cells[k] for k in sorted(cells, key=lambda k: (k[1], k[0]))]


def build_grid(
    debut: date,
    fin: date,
    catalog: List[RateType],
    cells: List[RateGridCell],
    stock: List[StockCell],
    linked: Optional[List[str]] = None,
) -> AccommodationGrid:
    """
    Fold raw cells into an AccommodationGrid.

    When ``linked`` is non-empty, only cells of those rate types are kept.
    Labels per date follow catalog order and are capped at two.
    """
    grid = AccommodationGrid()
    catalog_by_id = {rt.id: rt for rt in catalog}
    order = {rt.id: i for i, rt in enumerate(sorted(catalog, key=sort_key))}
    wanted = set(linked) if linked else None

    for c in cells:
        if not (debut <= c.date <= fin):
            continue
        if wanted is not None and c.rate_type_id not in wanted:
            continue
        d = c.date.isoformat()
        rt_id = c.rate_type_id

        rt = catalog_by_id.get(rt_id)
        label = (explicit_label(rt) if rt else None) or c.label or (label_of(rt) if rt else None)
        if label and rt_id not in grid.labels:
            grid.labels[rt_id] = label

        if c.price is not None:
            grid.prices.setdefault(rt_id, {})[d] = c.price
        if c.promotion_active is not None:
            grid.promo[d] = grid.promo.get(d, False) or c.promotion_active
        grid.min_stay.setdefault(d, {})[rt_id] = c.min_stay
        if c.arrival_allowed is not None:
            grid.arrival_allowed.setdefault(d, {})[rt_id] = c.arrival_allowed

    for rt_id, by_date in grid.prices.items():
        for d in by_date:
            grid.rate_types_by_date.setdefault(d, []).append(rt_id)
    for d, ids in grid.rate_types_by_date.items():
        ids.sort(key=lambda i: (order.get(i, len(order)), i))
        grid.rate_types_by_date[d] = [grid.labels.get(i, i) for i in ids][:MAX_LABELS_PER_DATE]

    for s in stock:
        if debut <= s.date <= fin:
            grid.stock[s.date.isoformat()] = s.available
    return grid


async def pull_remote_grid(
    accommodation: Accommodation,
    debut: date,
    fin: date,
    catalog: List[RateType],
    api: RemoteApi,
    repo: RatesRepo,
    supplier_id: int,
    ctx: RequestContext,
) -> Dict[str, int]:
    """Store the remote cells and stock of one accommodation, replacing whole cells."""
    cells, stock = await RemoteGridSource(api, supplier_id).load(accommodation, debut, fin, catalog, ctx)
    known = {rt.id for rt in catalog}
    kept = [c for c in cells if c.rate_type_id in known]
    if len(kept) != len(cells):
        logger.warning(
            "remote_cells_without_rate_type",
            trace_id=ctx.trace_id,
            accommodation_id=accommodation.id,
            dropped=len(cells) - len(kept),
        )
    written = await asyncio.to_thread(repo.upsert_cells, kept)
    stocked = await asyncio.to_thread(repo.upsert_stock, stock)
    return {"cells": written, "stock": stocked}
