#!/usr/bin/env python3
# sync_ical.py - run every configured calendar import once (for cron)
# Usage:
#   python scripts/sync_ical.py
#   python scripts/sync_ical.py --refresh-catalog
#   python scripts/sync_ical.py --check-accommodations --no-ical
#   python scripts/sync_ical.py --pull-grid --debut 2025-06-01 --fin 2025-09-30

import argparse
import asyncio
import json
from datetime import date, timedelta

import httpx

from staysync.clients.openpro import OpenProClient
from staysync.config import HTTP_TIMEOUT, OPENPRO_BASE_URL, REDIS_URL, SUPPLIER_ID
from staysync.context import RequestContext
from staysync.db import engine, init_db
from staysync.repositories.accommodations_repo import AccommodationsRepo
from staysync.repositories.bookings_repo import BookingsRepo
from staysync.repositories.ical_config_repo import IcalConfigRepo
from staysync.repositories.rates_repo import RatesRepo
from staysync.services.accommodation_check import check_remote_accommodations
from staysync.services.grid_loader import pull_remote_grid
from staysync.services.ical_sync import sync_all
from staysync.services.rate_types import load_catalog, refresh_catalog
from staysync.utils.log import setup_logging
from staysync.utils.store import make_store


def parse_args():
    ap = argparse.ArgumentParser(description="Calendar imports and remote catalog pulls")
    ap.add_argument("--refresh-catalog", action="store_true", help="copy remote rate types and links first")
    ap.add_argument("--pull-grid", action="store_true", help="store remote rates and stock for the range")
    ap.add_argument("--check-accommodations", action="store_true", help="compare remote and local accommodations")
    ap.add_argument("--debut", type=date.fromisoformat, default=date.today())
    ap.add_argument("--fin", type=date.fromisoformat, default=None)
    ap.add_argument("--no-ical", action="store_true", help="skip the calendar imports")
    return ap.parse_args()


async def run(args) -> dict:
    ctx = RequestContext()
    accommodations = AccommodationsRepo(engine)
    rates = RatesRepo(engine)
    out = {}

    if args.refresh_catalog or args.pull_grid or args.check_accommodations:
        if not OPENPRO_BASE_URL:
            raise SystemExit("OPENPRO_BASE_URL is not set")
        accs = accommodations.list_all()
        async with OpenProClient() as api:
            if args.check_accommodations:
                out["accommodations"] = await check_remote_accommodations(api, accommodations, SUPPLIER_ID, ctx)
            if args.refresh_catalog:
                out["catalog"] = await refresh_catalog(api, rates, SUPPLIER_ID, accs, ctx)
            if args.pull_grid:
                fin = args.fin or args.debut + timedelta(days=90)
                catalog = await load_catalog(rates)
                out["grid"] = {
                    acc.id: await pull_remote_grid(acc, args.debut, fin, catalog, api, rates, SUPPLIER_ID, ctx)
                    for acc in accs
                    if acc.openpro_id is not None
                }

    if not args.no_ical:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as http:
            out["ical"] = await sync_all(
                accommodations,
                IcalConfigRepo(engine),
                BookingsRepo(engine, supplier_id=SUPPLIER_ID),
                http,
                make_store(REDIS_URL),
                ctx,
            )
    return out


def main():
    setup_logging()
    init_db(engine)
    print(json.dumps(asyncio.run(run(parse_args())), indent=2, default=str))


if __name__ == "__main__":
    main()
