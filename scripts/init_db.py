#!/usr/bin/env python3
# init_db.py - create the staysync tables, optionally registering accommodations
# Usage:
#   python scripts/init_db.py
#   python scripts/init_db.py --add "Gîte du lac" --openpro 12345

import argparse

from staysync.db import engine, init_db
from staysync.repositories.accommodations_repo import AccommodationsRepo
from staysync.utils.schemas import Platform


def parse_args():
    ap = argparse.ArgumentParser(description="Create tables and register accommodations")
    ap.add_argument("--add", metavar="NAME", help="register an accommodation with this name")
    ap.add_argument("--openpro", metavar="ID", help="its OpenPro accommodation id")
    return ap.parse_args()


def main():
    args = parse_args()
    init_db(engine)
    print("tables ready on", engine.url.render_as_string(hide_password=True))
    if args.add:
        ids = {Platform.OPENPRO: args.openpro} if args.openpro else {}
        acc = AccommodationsRepo(engine).create(args.add, ids)
        print("registered", acc.id, acc.name, {p.value: v for p, v in acc.external_ids.items()})


if __name__ == "__main__":
    main()
