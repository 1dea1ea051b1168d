import asyncio
import time
from datetime import date
from typing import List, Optional

import structlog

from ..config import AGGREGATOR_CONCURRENCY, OBS_ON
from ..context import RequestContext
from ..errors import Cancelled, ValidationError
from ..repositories.rates_repo import RatesRepo
from ..utils.metrics import aggregation_latency_seconds, aggregator_step_failures_total
from ..utils.schemas import Accommodation, RateType, SupplierData
from .booking_merger import BookingMerger
from .grid_loader import AccommodationGrid, GridSource, build_grid
from .rate_types import build_rate_type_labels, build_rate_types_list, load_catalog

logger = structlog.get_logger(__name__)

STEP_LINKS = "rateTypeLinks"
STEP_GRID = "grid"
STEP_BOOKINGS = "bookings"


class SupplierDataAggregator:
    """
    Builds the consolidated per-accommodation view for a date range.

    The rate-type catalog is loaded once; its failure is fatal. Each
    accommodation then runs three independent steps (rate-type links, grid,
    merged bookings). A failing step is logged and replaced by an empty
    default for that accommodation only, and recorded in ``failures``.
    Cancellation aborts the whole aggregation.
    """

    def __init__(
        self,
        rates: RatesRepo,
        grid_source: GridSource,
        merger: BookingMerger,
        concurrency: int = AGGREGATOR_CONCURRENCY,
    ):
        self.rates = rates
        self.grid_source = grid_source
        self.merger = merger
        self.concurrency = max(1, concurrency)

    async def aggregate(
        self,
        supplier_id: int,
        accommodations: List[Accommodation],
        debut: date,
        fin: date,
        ctx: RequestContext,
    ) -> SupplierData:
        if fin < debut:
            raise ValidationError("fin must be on or after debut")
        start = time.perf_counter()
        log = logger.bind(trace_id=ctx.trace_id, supplier_id=supplier_id)
        ctx.check()

        catalog = await load_catalog(self.rates)
        result = SupplierData()
        sem = asyncio.Semaphore(self.concurrency)

        async def one(acc: Accommodation) -> None:
            async with sem:
                await self._load_accommodation(acc, debut, fin, catalog, result, ctx)

        tasks = [asyncio.create_task(one(acc)) for acc in accommodations]
        try:
            await asyncio.gather(*tasks)
        except Cancelled:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            log.info("aggregation_cancelled", reason=ctx.cancel.reason)
            raise
        finally:
            if OBS_ON:
                aggregation_latency_seconds.observe(time.perf_counter() - start)

        log.info(
            "aggregation_done",
            accommodations=len(accommodations),
            failed=len(result.failures),
            ms=int((time.perf_counter() - start) * 1000),
        )
        return result

    def _failed(self, result: SupplierData, acc: Accommodation, step: str, err: Exception, ctx) -> None:
        logger.warning(
            "aggregation_step_failed",
            trace_id=ctx.trace_id,
            accommodation_id=acc.id,
            step=step,
            error=f"{type(err).__name__}: {err}",
        )
        result.failures.setdefault(acc.id, []).append(step)
        if OBS_ON:
            aggregator_step_failures_total.labels(step=step).inc()

    async def _load_accommodation(
        self,
        acc: Accommodation,
        debut: date,
        fin: date,
        catalog: List[RateType],
        result: SupplierData,
        ctx: RequestContext,
    ) -> None:
        ctx.check()

        linked: Optional[List[str]]
        try:
            linked = await asyncio.to_thread(self.rates.list_links, acc.id)
        except Cancelled:
            raise
        except Exception as e:
            self._failed(result, acc, STEP_LINKS, e, ctx)
            linked = None

        try:
            cells, stock = await self.grid_source.load(acc, debut, fin, catalog, ctx)
            grid = build_grid(debut, fin, catalog, cells, stock, linked)
        except Cancelled:
            raise
        except Exception as e:
            self._failed(result, acc, STEP_GRID, e, ctx)
            grid = AccommodationGrid()

        try:
            bookings = await self.merger.load(acc, ctx)
        except Cancelled:
            raise
        except Exception as e:
            self._failed(result, acc, STEP_BOOKINGS, e, ctx)
            bookings = []

        rate_types_list = build_rate_types_list(catalog, linked or [])
        labels = build_rate_type_labels(rate_types_list)
        # labels read from the grid carry the period libelle
        labels.update(grid.labels)

        # each accommodation writes only its own keys
        result.stock[acc.id] = grid.stock
        result.rates[acc.id] = grid.prices
        result.promo[acc.id] = grid.promo
        result.rate_types[acc.id] = grid.rate_types_by_date
        result.min_duration[acc.id] = grid.min_stay
        result.arrival_allowed[acc.id] = grid.arrival_allowed
        result.rate_type_labels[acc.id] = labels
        result.rate_types_list[acc.id] = rate_types_list
        result.bookings[acc.id] = bookings
        result.rate_type_links_by_accommodation[acc.id] = linked or []
