import asyncio
from typing import Any, Dict, List

import structlog

from ..clients.openpro import RemoteApi
from ..context import RequestContext
from ..repositories.accommodations_repo import AccommodationsRepo
from ..utils.normalize import remote_accommodation_list
from ..utils.schemas import Platform

logger = structlog.get_logger(__name__)


async def check_remote_accommodations(
    api: RemoteApi,
    accommodations: AccommodationsRepo,
    supplier_id: int,
    ctx: RequestContext,
) -> Dict[str, Any]:
    """
    Compare the remote accommodation listing with the local directory.

    ``missing``: local accommodations whose remote id the API does not list.
    ``unmapped``: remote accommodations no local accommodation points to.
    Neither is fixed here; both are logged for an operator.
    """
    payload = await api.list_accommodations(supplier_id, ctx)
    remote = remote_accommodation_list(payload)
    remote_ids = {r["remote_id"] for r in remote}

    missing: List[str] = []
    for acc in await asyncio.to_thread(accommodations.list_all):
        if acc.openpro_id is not None and acc.openpro_id not in remote_ids:
            logger.warning(
                "accommodation_missing_remotely",
                trace_id=ctx.trace_id,
                accommodation_id=acc.id,
                remote_id=acc.openpro_id,
            )
            missing.append(acc.id)

    unmapped: List[Dict[str, Any]] = []
    for r in remote:
        ctx.check()
        local = await asyncio.to_thread(accommodations.find_by_platform_id, Platform.OPENPRO, str(r["remote_id"]))
        if local is None:
            logger.warning("remote_accommodation_unmapped", trace_id=ctx.trace_id, **r)
            unmapped.append(r)

    logger.info(
        "accommodations_checked", trace_id=ctx.trace_id, remote=len(remote), missing=len(missing), unmapped=len(unmapped)
    )
    return {"remote": len(remote), "missing": missing, "unmapped": unmapped}
