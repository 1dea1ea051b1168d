import asyncio
from typing import Iterable, Set

import structlog

from ..config import ICAL_EXPORT_EXCLUDED_PLATFORMS
from ..errors import ValidationError
from ..ical.generator import build_calendar
from ..repositories.accommodations_repo import AccommodationsRepo
from ..repositories.bookings_repo import BookingsRepo
from ..utils.schemas import Platform

logger = structlog.get_logger(__name__)


def excluded_platforms(names: Iterable[str]) -> Set[Platform]:
    out: Set[Platform] = set()
    for name in names:
        try:
            out.add(Platform.parse(name))
        except ValidationError:
            logger.warning("export_exclusion_unknown_platform", platform=name)
    return out


async def export_calendar(
    accommodation_id: str,
    target: Platform,
    accommodations: AccommodationsRepo,
    bookings: BookingsRepo,
    configured_exclusions: Iterable[str] = ICAL_EXPORT_EXCLUDED_PLATFORMS,
) -> str:
    """
    Calendar published to ``target`` for one accommodation.

    Bookings of ``target`` itself are never echoed back to it, nor are those
    of the configured platforms.
    """
    acc = await asyncio.to_thread(accommodations.load, accommodation_id)
    rows = await asyncio.to_thread(bookings.list_for_accommodation, acc.id)
    excluded = excluded_platforms(configured_exclusions) | {target}
    return build_calendar(rows, excluded, calendar_name=f"{acc.name} ({target.value})")
