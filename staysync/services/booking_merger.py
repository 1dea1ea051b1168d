import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import pydantic
import structlog

from ..clients.openpro import RemoteApi
from ..context import RequestContext
from ..repositories.bookings_repo import BookingsRepo
from ..utils.normalize import dossier_fields, dossier_list
from ..utils.schemas import Accommodation, Booking, BookingStatus, Platform

logger = structlog.get_logger(__name__)

# identity fields a remote record never overrides
_KEPT_FROM_LOCAL = {"booking_id", "accommodation_id"}


def _created_at(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None


def dossiers_to_bookings(payload: Any, accommodation: Accommodation) -> List[Booking]:
    """Remote dossiers of one accommodation as canonical bookings. Unusable dossiers are dropped."""
    out: List[Booking] = []
    for dossier in dossier_list(payload):
        try:
            f = dossier_fields(dossier)
        except ValueError:
            logger.debug("dossier_skipped", reason="no_dates")
            continue
        remote_acc = f["remote_accommodation_id"]
        if remote_acc is not None and accommodation.openpro_id is not None and remote_acc != accommodation.openpro_id:
            continue
        try:
            out.append(
                Booking(
                    booking_id=f"openpro-{f['remote_id']}" if f["remote_id"] else f"openpro-{len(out)}",
                    accommodation_id=accommodation.id,
                    arrival_date=f["arrival_date"],
                    departure_date=f["departure_date"],
                    reference=f["reference"],
                    platform=Platform.OPENPRO,
                    status=BookingStatus.CANCELLED if f["cancelled"] else BookingStatus.CONFIRMED,
                    client_first_name=f["client_first_name"],
                    client_last_name=f["client_last_name"],
                    client_email=f["client_email"],
                    client_phone=f["client_phone"],
                    total_amount=f["total_amount"],
                    number_of_persons=f["number_of_persons"],
                    currency=f["currency"],
                    created_at=_created_at(f["created_at"]),
                )
            )
        except pydantic.ValidationError as e:
            logger.debug("dossier_skipped", reason="invalid", error=str(e))
    return out


def _overlay(local: Booking, remote: Booking) -> Booking:
    data = {name: getattr(local, name) for name in Booking.model_fields}
    for name in Booking.model_fields:
        if name in _KEPT_FROM_LOCAL:
            continue
        value = getattr(remote, name)
        if value is not None:
            data[name] = value
    return Booking(**data)


def merge_bookings(local: List[Booking], remote: List[Booking]) -> List[Booking]:
    """
    Deduplicated union of local and remote bookings, keyed by (reference, platform).

    - a local Cancelled booking wins over the remote record
    - otherwise remote fields win, the local booking_id is kept
    - records without a reference are never deduplicated
    Sorted by arrival date, then reference.
    """
    local_by_key: Dict[tuple, Booking] = {b.dedup_key: b for b in local if b.dedup_key}
    seen = set()
    merged: List[Booking] = []

    for r in remote:
        key = r.dedup_key
        if key is None:
            merged.append(r)
            continue
        if key in seen:
            continue
        seen.add(key)
        match = local_by_key.get(key)
        if match is None:
            merged.append(r)
        elif match.status == BookingStatus.CANCELLED:
            merged.append(match)
        else:
            merged.append(_overlay(match, r))

    for b in local:
        if b.dedup_key is None or b.dedup_key not in seen:
            merged.append(b)

    merged.sort(key=lambda b: (b.arrival_date, b.reference or ""))
    return merged


class BookingMerger:
    def __init__(self, bookings: BookingsRepo, api: Optional[RemoteApi] = None, supplier_id: int = 0):
        self.bookings = bookings
        self.api = api
        self.supplier_id = supplier_id

    async def load(self, accommodation: Accommodation, ctx: RequestContext) -> List[Booking]:
        local = await asyncio.to_thread(self.bookings.list_for_accommodation, accommodation.id)
        remote: List[Booking] = []
        if self.api is not None and accommodation.openpro_id is not None:
            ctx.check()
            payload = await self.api.list_bookings(self.supplier_id, accommodation.openpro_id, ctx)
            remote = dossiers_to_bookings(payload, accommodation)
        merged = merge_bookings(local, remote)
        logger.debug(
            "bookings_merged",
            trace_id=ctx.trace_id,
            accommodation_id=accommodation.id,
            local=len(local),
            remote=len(remote),
            merged=len(merged),
        )
        return merged
