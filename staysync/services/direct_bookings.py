"""
Bookings taken locally, and what they change on the remote API.

A local booking closes its nights (stock 0) locally and, when the
accommodation has a remote id, remotely too. With pushing enabled the
booking itself is also sent as a remote dossier. Remote calls never undo a
local write: their failures are logged and reported in ``remote_errors``.
"""
import asyncio
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import structlog

from ..clients.openpro import RemoteApi
from ..context import RequestContext
from ..errors import UpstreamError
from ..repositories.accommodations_repo import AccommodationsRepo
from ..repositories.bookings_repo import BookingsRepo
from ..repositories.rates_repo import RatesRepo
from ..utils.normalize import iter_dates
from ..utils.schemas import PLATFORM_ORIGIN, Accommodation, Booking, BookingCreate, StockDay, StockUpdate
from .rate_updates import apply_stock_update

logger = structlog.get_logger(__name__)


def booked_nights(arrival: date, departure: date) -> List[date]:
    """Nights of a stay: arrival included, departure excluded."""
    return list(iter_dates(arrival, departure - timedelta(days=1)))


def booking_to_dossier(booking: Booking, remote_accommodation_id: int) -> Dict[str, Any]:
    return {
        "reference": booking.reference,
        "client": {
            "nom": booking.client_last_name or "",
            "prenom": booking.client_first_name or "",
            "email": booking.client_email or "",
            "telephone": booking.client_phone or "",
        },
        "hebergement": {
            "idHebergement": remote_accommodation_id,
            "dateArrivee": booking.arrival_date.isoformat(),
            "dateDepart": booking.departure_date.isoformat(),
            "nbNuits": booking.number_of_nights,
            "nbPersonnes": booking.number_of_persons or 2,
        },
        "paiement": {"montantTotal": booking.total_amount or 0, "devise": booking.currency or "EUR"},
    }


async def create_direct_booking(
    req: BookingCreate,
    accommodations: AccommodationsRepo,
    bookings: BookingsRepo,
    rates: RatesRepo,
    api: Optional[RemoteApi],
    supplier_id: int,
    ctx: RequestContext,
    push: bool = False,
) -> Dict[str, Any]:
    """Create the booking, then close its nights and optionally push it."""
    acc = await asyncio.to_thread(accommodations.load, req.accommodation_id)
    booking = await asyncio.to_thread(bookings.create, req)
    log = logger.bind(trace_id=ctx.trace_id, booking_id=booking.booking_id, accommodation_id=acc.id)
    log.info("booking_created", platform=booking.platform.value)

    remote_errors: List[str] = []
    if PLATFORM_ORIGIN[booking.platform] == "local":
        await _close_nights(booking, acc, rates, api, supplier_id, ctx, remote_errors)
        if push and api is not None and acc.openpro_id is not None:
            try:
                await api.create_booking(supplier_id, booking_to_dossier(booking, acc.openpro_id), ctx)
                log.info("booking_pushed", remote_accommodation_id=acc.openpro_id)
            except UpstreamError as e:
                log.warning("booking_push_failed", error=str(e))
                remote_errors.append(f"booking: {e}")
    return {"booking": booking, "remote_errors": remote_errors}


async def _close_nights(
    booking: Booking,
    acc: Accommodation,
    rates: RatesRepo,
    api: Optional[RemoteApi],
    supplier_id: int,
    ctx: RequestContext,
    remote_errors: List[str],
) -> None:
    jours = [StockDay(date=d, dispo=0) for d in booked_nights(booking.arrival_date, booking.departure_date)]
    try:
        await apply_stock_update(acc, StockUpdate(jours=jours), rates, api, supplier_id, ctx)
    except UpstreamError as e:
        logger.warning("booking_stock_close_failed", trace_id=ctx.trace_id, booking_id=booking.booking_id, error=str(e))
        remote_errors.append(f"stock: {e}")


async def delete_direct_booking(bookings: BookingsRepo, booking_id: str, ctx: RequestContext) -> Booking:
    deleted = await asyncio.to_thread(bookings.delete, booking_id)
    logger.info(
        "booking_deleted",
        trace_id=ctx.trace_id,
        booking_id=booking_id,
        accommodation_id=deleted.accommodation_id,
        platform=deleted.platform.value,
    )
    return deleted
