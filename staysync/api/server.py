import asyncio
from dataclasses import dataclass
from datetime import date
from typing import Optional

import httpx
import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import ORJSONResponse, Response
from prometheus_client import make_asgi_app
from sqlalchemy.engine import Engine

from ..clients.openpro import OpenProClient, RemoteApi
from ..config import (
    BOOKING_PUSH,
    CRON_HEADER,
    GRID_SOURCE,
    HTTP_TIMEOUT,
    OBS_ON,
    OPENPRO_BASE_URL,
    REDIS_URL,
    SUPPLIER_ID,
)
from ..context import RequestContext
from ..db import engine as default_engine
from ..db import init_db
from ..errors import Cancelled, NotFoundError, ParseError, UpstreamError, ValidationError
from ..repositories.accommodations_repo import AccommodationsRepo
from ..repositories.bookings_repo import BookingsRepo
from ..repositories.ical_config_repo import IcalConfigRepo
from ..repositories.rates_repo import RatesRepo
from ..services.accommodation_check import check_remote_accommodations
from ..services.booking_merger import BookingMerger
from ..services.direct_bookings import create_direct_booking, delete_direct_booking
from ..services.grid_loader import RemoteGridSource, StoredGridSource
from ..services.ical_export import export_calendar
from ..services.ical_sync import JobState, SyncJob, job_history, sync_all
from ..services.rate_updates import apply_bulk_update, apply_stock_update
from ..services.supplier_data import SupplierDataAggregator
from ..utils.log import setup_logging
from ..utils.schemas import (
    PLATFORM_ORIGIN,
    BookingCreate,
    BulkUpdateRequest,
    ExternalIdIn,
    Platform,
    StatusUpdate,
    StockUpdate,
    SyncConfigIn,
)
from ..utils.store import KeyValueStore, make_store

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    engine: Engine
    accommodations: AccommodationsRepo
    bookings: BookingsRepo
    rates: RatesRepo
    configs: IcalConfigRepo
    merger: BookingMerger
    aggregator: SupplierDataAggregator
    http: httpx.AsyncClient
    store: KeyValueStore
    api: Optional[RemoteApi] = None
    supplier_id: int = SUPPLIER_ID
    push_bookings: bool = BOOKING_PUSH

    async def aclose(self) -> None:
        await self.http.aclose()
        if isinstance(self.api, OpenProClient):
            await self.api.aclose()


def build_services(
    bind: Optional[Engine] = None,
    api: Optional[RemoteApi] = None,
    http: Optional[httpx.AsyncClient] = None,
    store: Optional[KeyValueStore] = None,
    supplier_id: int = SUPPLIER_ID,
    grid_source: str = GRID_SOURCE,
    push_bookings: bool = BOOKING_PUSH,
) -> Services:
    bind = bind or default_engine
    if api is None and OPENPRO_BASE_URL:
        api = OpenProClient()
    rates = RatesRepo(bind)
    bookings = BookingsRepo(bind, supplier_id=supplier_id)
    merger = BookingMerger(bookings, api, supplier_id)
    if grid_source == "remote" and api is not None:
        source = RemoteGridSource(api, supplier_id)
    else:
        source = StoredGridSource(rates)
    return Services(
        engine=bind,
        accommodations=AccommodationsRepo(bind),
        bookings=bookings,
        rates=rates,
        configs=IcalConfigRepo(bind),
        merger=merger,
        aggregator=SupplierDataAggregator(rates, source, merger),
        http=http or httpx.AsyncClient(timeout=HTTP_TIMEOUT),
        store=store or make_store(REDIS_URL),
        api=api,
        supplier_id=supplier_id,
        push_bookings=push_bookings,
    )


# --- FastAPI App Setup ---
app = FastAPI(title="staysync", default_response_class=ORJSONResponse)
router = APIRouter()


@app.on_event("startup")
def on_start() -> None:
    setup_logging()
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    init_db(app.state.services.engine)
    logger.info(
        "staysync_started",
        supplier_id=app.state.services.supplier_id,
        remote_api=app.state.services.api is not None,
        push_bookings=app.state.services.push_bookings,
    )


@app.on_event("shutdown")
async def on_stop() -> None:
    svc = getattr(app.state, "services", None)
    if svc is not None:
        await svc.aclose()


def _svc(request: Request) -> Services:
    return request.app.state.services


def _ctx(request: Request) -> RequestContext:
    trace_id = request.headers.get("X-Trace-Id")
    return RequestContext(trace_id=trace_id) if trace_id else RequestContext()


def _parse_iso_date(s: Optional[str], field: str) -> date:
    try:
        return date.fromisoformat(s or "")
    except ValueError:
        raise ValidationError(f"{field} must be ISO date YYYY-MM-DD")


def _platform(raw: str) -> Platform:
    return Platform.parse(raw)


def _supplier(svc: Services, raw: str) -> int:
    if not raw.isdigit():
        raise ValidationError(f"supplier id must be numeric: {raw!r}")
    if int(raw) != svc.supplier_id:
        raise NotFoundError(f"supplier {raw} is not served here")
    return svc.supplier_id


# --- Error mapping ---


def _error(status: int, exc: Exception) -> ORJSONResponse:
    return ORJSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(ValidationError)
async def _on_validation(request: Request, exc: ValidationError):
    return _error(400, exc)


@app.exception_handler(NotFoundError)
async def _on_not_found(request: Request, exc: NotFoundError):
    return _error(404, exc)


@app.exception_handler(UpstreamError)
async def _on_upstream(request: Request, exc: UpstreamError):
    return _error(502, exc)


@app.exception_handler(ParseError)
async def _on_parse(request: Request, exc: ParseError):
    return _error(502, exc)


@app.exception_handler(Cancelled)
async def _on_cancelled(request: Request, exc: Cancelled):
    return _error(499, exc)


# --- Aggregated view ---


async def _cancel_on_disconnect(request: Request, ctx: RequestContext) -> None:
    while not ctx.cancel.cancelled:
        if await request.is_disconnected():
            ctx.cancel.cancel("client disconnected")
            return
        await asyncio.sleep(0.5)


@router.get("/api/suppliers/{supplier_id}/data")
async def supplier_data(supplier_id: str, request: Request, debut: Optional[str] = None, fin: Optional[str] = None):
    svc = _svc(request)
    sid = _supplier(svc, supplier_id)
    ctx = _ctx(request)
    start = _parse_iso_date(debut, "debut")
    end = _parse_iso_date(fin, "fin")
    accommodations = await asyncio.to_thread(svc.accommodations.list_all)

    watcher = asyncio.create_task(_cancel_on_disconnect(request, ctx))
    try:
        data = await svc.aggregator.aggregate(sid, accommodations, start, end, ctx)
    finally:
        watcher.cancel()
    return data.model_dump(by_alias=True, mode="json")


# --- Bookings ---


@router.get("/api/accommodations/{accommodation_id}/bookings")
async def accommodation_bookings(accommodation_id: str, request: Request):
    svc = _svc(request)
    acc = await asyncio.to_thread(svc.accommodations.load, accommodation_id)
    rows = await svc.merger.load(acc, _ctx(request))
    return [b.model_dump(by_alias=True, mode="json") for b in rows]


@router.post("/api/bookings", status_code=201)
async def create_booking(req: BookingCreate, request: Request):
    svc = _svc(request)
    out = await create_direct_booking(
        req, svc.accommodations, svc.bookings, svc.rates, svc.api, svc.supplier_id, _ctx(request), svc.push_bookings
    )
    return {**out["booking"].model_dump(by_alias=True, mode="json"), "remoteErrors": out["remote_errors"]}


@router.delete("/api/bookings/{booking_id}")
async def delete_booking(booking_id: str, request: Request):
    deleted = await delete_direct_booking(_svc(request).bookings, booking_id, _ctx(request))
    return {"deleted": True, "booking": deleted.model_dump(by_alias=True, mode="json")}


@router.post("/api/bookings/{booking_id}/status")
async def update_booking_status(booking_id: str, req: StatusUpdate, request: Request):
    svc = _svc(request)
    booking = await asyncio.to_thread(svc.bookings.transition_status, booking_id, req.status)
    return booking.model_dump(by_alias=True, mode="json")


# --- Rates, stock and accommodation directory ---


@router.post("/api/suppliers/{supplier_id}/bulk-update")
async def bulk_update(supplier_id: str, req: BulkUpdateRequest, request: Request):
    svc = _svc(request)
    sid = _supplier(svc, supplier_id)
    return await apply_bulk_update(req, svc.accommodations, svc.rates, svc.api, sid, _ctx(request))


@router.post("/api/suppliers/{supplier_id}/accommodations/{accommodation_id}/stock")
async def update_stock(supplier_id: str, accommodation_id: str, req: StockUpdate, request: Request):
    svc = _svc(request)
    sid = _supplier(svc, supplier_id)
    acc = await asyncio.to_thread(svc.accommodations.load, accommodation_id)
    return await apply_stock_update(acc, req, svc.rates, svc.api, sid, _ctx(request))


@router.get("/api/suppliers/{supplier_id}/accommodations/check")
async def check_accommodations(supplier_id: str, request: Request):
    svc = _svc(request)
    sid = _supplier(svc, supplier_id)
    if svc.api is None:
        raise ValidationError("no remote API is configured")
    return await check_remote_accommodations(svc.api, svc.accommodations, sid, _ctx(request))


@router.get("/api/accommodations/{accommodation_id}/external-ids")
async def get_external_ids(accommodation_id: str, request: Request):
    acc = await asyncio.to_thread(_svc(request).accommodations.load, accommodation_id)
    return {"ids": {p.value: v for p, v in acc.external_ids.items()}}


@router.post("/api/accommodations/{accommodation_id}/external-ids")
async def set_external_id(accommodation_id: str, req: ExternalIdIn, request: Request):
    svc = _svc(request)
    acc = await asyncio.to_thread(
        svc.accommodations.set_external_id, accommodation_id, _platform(req.platform), req.external_id
    )
    return {"success": True, "ids": {p.value: v for p, v in acc.external_ids.items()}}


# --- Calendars ---


@router.get("/api/ical/export/{accommodation_id}/{platform}")
async def ical_export(accommodation_id: str, platform: str, request: Request):
    svc = _svc(request)
    body = await export_calendar(accommodation_id, _platform(platform), svc.accommodations, svc.bookings)
    return Response(content=body, media_type="text/calendar; charset=utf-8")


@router.put("/api/ical/config/{accommodation_id}/{platform}")
async def save_ical_config(accommodation_id: str, platform: str, req: SyncConfigIn, request: Request):
    svc = _svc(request)
    pf = _platform(platform)
    await asyncio.to_thread(svc.accommodations.load, accommodation_id)
    cfg = await asyncio.to_thread(svc.configs.save, accommodation_id, pf, req.import_url, req.export_url)
    return cfg.model_dump(by_alias=True, mode="json")


@router.get("/api/ical/config/{accommodation_id}/{platform}")
async def get_ical_config(accommodation_id: str, platform: str, request: Request):
    svc = _svc(request)
    cfg = await asyncio.to_thread(svc.configs.load, accommodation_id, _platform(platform))
    if cfg is None:
        raise NotFoundError(f"no calendar config for {accommodation_id}/{platform}")
    return cfg.model_dump(by_alias=True, mode="json")


@router.delete("/api/ical/config/{accommodation_id}/{platform}")
async def delete_ical_config(accommodation_id: str, platform: str, request: Request):
    svc = _svc(request)
    if not await asyncio.to_thread(svc.configs.delete, accommodation_id, _platform(platform)):
        raise NotFoundError(f"no calendar config for {accommodation_id}/{platform}")
    return {"deleted": True}


@router.post("/api/ical/sync/{accommodation_id}/{platform}")
async def ical_sync(accommodation_id: str, platform: str, request: Request):
    svc = _svc(request)
    pf = _platform(platform)
    if PLATFORM_ORIGIN[pf] != "ical":
        raise ValidationError(f"{pf.value} bookings are not imported from a calendar")
    cfg = await asyncio.to_thread(svc.configs.load, accommodation_id, pf)
    if cfg is None:
        raise NotFoundError(f"no calendar config for {accommodation_id}/{platform}")
    if not cfg.import_url:
        raise ValidationError(f"no import URL configured for {accommodation_id}/{platform}")

    job = SyncJob(accommodation_id, pf, cfg.import_url, svc.bookings, svc.http, svc.store)
    result = await job.run(_ctx(request))
    if job.state == JobState.FAILED:
        return ORJSONResponse(status_code=502, content=result)
    return result


@router.get("/api/ical/sync/{accommodation_id}/{platform}/history")
async def ical_sync_history(accommodation_id: str, platform: str, request: Request):
    return job_history(_svc(request).store, accommodation_id, _platform(platform))


@router.post("/cron/sync-ical-imports")
async def cron_sync_ical(request: Request):
    if request.headers.get(CRON_HEADER, "").lower() != "true":
        return ORJSONResponse(status_code=403, content={"detail": "forbidden"})
    svc = _svc(request)
    return await sync_all(svc.accommodations, svc.configs, svc.bookings, svc.http, svc.store, _ctx(request))


app.include_router(router)

# Expose /metrics for Prometheus (only if enabled)
if OBS_ON:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)
