import asyncio
from typing import Dict, List, Optional

import structlog

from ..clients.openpro import RemoteApi
from ..context import RequestContext
from ..repositories.rates_repo import RatesRepo
from ..utils.normalize import extract_label, linked_rate_type_ids, rate_type_list
from ..utils.schemas import Accommodation, RateType

logger = structlog.get_logger(__name__)

DEFAULT_ORDER = 999


def sort_key(rt: RateType):
    return (rt.order if rt.order is not None else DEFAULT_ORDER, rt.id)


def explicit_label(rt: RateType) -> Optional[str]:
    return extract_label(rt.label) or None


def label_of(rt: RateType) -> Optional[str]:
    label = explicit_label(rt)
    if label:
        return label
    if rt.external_rate_type_id:
        return f"Type {rt.external_rate_type_id}"
    return None


def build_rate_types_list(catalog: List[RateType], linked: List[str]) -> List[RateType]:
    """Catalog entries linked to an accommodation, by display order."""
    wanted = set(linked)
    return sorted((rt for rt in catalog if rt.id in wanted), key=sort_key)


def build_rate_type_labels(rate_types: List[RateType]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for rt in rate_types:
        label = label_of(rt)
        if label:
            out[rt.id] = label
    return out


async def load_catalog(repo: RatesRepo) -> List[RateType]:
    catalog = await asyncio.to_thread(repo.list_rate_types)
    return sorted(catalog, key=sort_key)


async def refresh_catalog(
    api: RemoteApi,
    repo: RatesRepo,
    supplier_id: int,
    accommodations: List[Accommodation],
    ctx: RequestContext,
) -> Dict[str, int]:
    """Copy the remote rate types and accommodation links into the local catalog."""
    payload = await api.list_rate_types(supplier_id, ctx)
    ids_by_ext: Dict[int, str] = {}
    for fields in rate_type_list(payload):
        ids_by_ext[fields["external_rate_type_id"]] = await asyncio.to_thread(
            repo.upsert_rate_type,
            fields["external_rate_type_id"],
            fields["label"],
            fields["description"],
            fields["order"],
        )

    links = 0
    for acc in accommodations:
        if acc.openpro_id is None:
            continue
        ctx.check()
        raw = await api.list_rate_type_links(supplier_id, acc.openpro_id, ctx)
        for ext in linked_rate_type_ids(raw):
            rt_id = ids_by_ext.get(ext)
            if rt_id is None:
                logger.warning("rate_type_link_unknown", accommodation_id=acc.id, id_type_tarif=ext)
                continue
            await asyncio.to_thread(repo.link_rate_type, acc.id, rt_id)
            links += 1

    logger.info("rate_catalog_refreshed", trace_id=ctx.trace_id, rate_types=len(ids_by_ext), links=links)
    return {"rate_types": len(ids_by_ext), "links": links}
