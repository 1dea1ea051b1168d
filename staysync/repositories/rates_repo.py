import json
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..db import engine as default_engine
from ..utils.schemas import RateGridCell, RateType, StockCell


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def _load(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw  # legacy rows hold a bare string


def _opt_bool(v) -> Optional[bool]:
    # SQLite hands booleans back as 0/1
    return None if v is None else bool(v)


class RatesRepo:
    """Rate-type catalog, accommodation links, rate cells and stock."""

    def __init__(self, bind: Optional[Engine] = None):
        self.engine = bind or default_engine

    # -------- catalog --------

    def list_rate_types(self) -> List[RateType]:
        with self.engine.begin() as conn:
            rows = (
                conn.execute(
                    text(
                        """
                    SELECT id, id_type_tarif, libelle, description, ordre
                      FROM rate_types
                     ORDER BY COALESCE(ordre, 999), id
                """
                    )
                )
                .mappings()
                .all()
            )
        return [
            RateType(
                id=r["id"],
                external_rate_type_id=r["id_type_tarif"],
                label=_load(r["libelle"]),
                description=_load(r["description"]),
                order=r["ordre"],
            )
            for r in rows
        ]

    def upsert_rate_type(
        self,
        external_rate_type_id: int,
        label: Any = None,
        description: Any = None,
        order: Optional[int] = None,
    ) -> str:
        """Insert or refresh the catalog entry for a remote rate type. Returns its internal id."""
        now = _now()
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    """
                INSERT INTO rate_types
                    (id, id_type_tarif, libelle, description, ordre, date_creation, date_modification)
                VALUES (:id, :ext, :lbl, :descr, :ordre, :now, :now)
                ON CONFLICT (id_type_tarif) DO UPDATE SET
                  libelle=EXCLUDED.libelle, description=EXCLUDED.description,
                  ordre=EXCLUDED.ordre, date_modification=EXCLUDED.date_modification
            """
                ),
                {
                    "id": uuid.uuid4().hex,
                    "ext": external_rate_type_id,
                    "lbl": _dump(label),
                    "descr": _dump(description),
                    "ordre": order,
                    "now": now,
                },
            )
            return conn.execute(
                text("SELECT id FROM rate_types WHERE id_type_tarif=:ext"),
                {"ext": external_rate_type_id},
            ).scalar_one()

    # -------- links --------

    def link_rate_type(self, accommodation_id: str, rate_type_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    """
                INSERT INTO accommodation_rate_type_links
                    (id, id_hebergement, id_rate_type, id_type_tarif, date_creation)
                SELECT :id, :acc, rt.id, rt.id_type_tarif, :now
                  FROM rate_types rt
                 WHERE rt.id=:rt
                ON CONFLICT (id_hebergement, id_rate_type) DO NOTHING
            """
                ),
                {"id": uuid.uuid4().hex, "acc": accommodation_id, "rt": rate_type_id, "now": _now()},
            )

    def list_links(self, accommodation_id: str) -> List[str]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                text(
                    """
                SELECT l.id_rate_type
                  FROM accommodation_rate_type_links l
                  LEFT JOIN rate_types rt ON rt.id = l.id_rate_type
                 WHERE l.id_hebergement=:acc
                 ORDER BY COALESCE(rt.ordre, 999), l.id_rate_type
            """
                ),
                {"acc": accommodation_id},
            ).all()
        return [r[0] for r in rows]

    # -------- grid cells --------

    def load_cells(self, accommodation_id: str, debut: date, fin: date) -> List[RateGridCell]:
        with self.engine.begin() as conn:
            rows = (
                conn.execute(
                    text(
                        """
                    SELECT id_rate_type, date, prix_nuitee, duree_minimale, duree_maximale,
                           arrivee_autorisee, depart_autorise, promotion_active, libelle
                      FROM accommodation_data
                     WHERE id_hebergement=:acc AND date >= :debut AND date <= :fin
                     ORDER BY date, id_rate_type
                """
                    ),
                    {"acc": accommodation_id, "debut": debut.isoformat(), "fin": fin.isoformat()},
                )
                .mappings()
                .all()
            )
        return [
            RateGridCell(
                accommodation_id=accommodation_id,
                rate_type_id=r["id_rate_type"],
                date=r["date"],
                price=r["prix_nuitee"],
                min_stay=r["duree_minimale"],
                max_stay=r["duree_maximale"],
                arrival_allowed=_opt_bool(r["arrivee_autorisee"]),
                departure_allowed=_opt_bool(r["depart_autorise"]),
                promotion_active=_opt_bool(r["promotion_active"]),
                label=r["libelle"],
            )
            for r in rows
        ]

    def upsert_cells(self, cells: Iterable[RateGridCell]) -> int:
        """Write whole cells; every column of an existing cell is replaced."""
        now = _now()
        n = 0
        with self.engine.begin() as conn:
            for c in cells:
                res = conn.execute(
                    text(
                        """
                    INSERT INTO accommodation_data
                        (id, id_hebergement, id_rate_type, id_type_tarif, date,
                         prix_nuitee, duree_minimale, duree_maximale,
                         arrivee_autorisee, depart_autorise, promotion_active, libelle,
                         date_creation, date_modification)
                    SELECT :id, :acc, rt.id, rt.id_type_tarif, :d,
                           :prix, :dmin, :dmax, :arr, :dep, :promo, :lbl, :now, :now
                      FROM rate_types rt
                     WHERE rt.id=:rt
                    ON CONFLICT (id_hebergement, id_rate_type, date) DO UPDATE SET
                      prix_nuitee=EXCLUDED.prix_nuitee,
                      duree_minimale=EXCLUDED.duree_minimale,
                      duree_maximale=EXCLUDED.duree_maximale,
                      arrivee_autorisee=EXCLUDED.arrivee_autorisee,
                      depart_autorise=EXCLUDED.depart_autorise,
                      promotion_active=EXCLUDED.promotion_active,
                      libelle=EXCLUDED.libelle,
                      date_modification=EXCLUDED.date_modification
                """
                    ),
                    {
                        "id": uuid.uuid4().hex,
                        "acc": c.accommodation_id,
                        "rt": c.rate_type_id,
                        "d": c.date.isoformat(),
                        "prix": c.price,
                        "dmin": c.min_stay,
                        "dmax": c.max_stay,
                        "arr": c.arrival_allowed,
                        "dep": c.departure_allowed,
                        "promo": c.promotion_active,
                        "lbl": c.label,
                        "now": now,
                    },
                )
                # cells of rate types missing from the catalog are not written
                n += res.rowcount
        return n

    # -------- stock --------

    def load_stock(self, accommodation_id: str, debut: date, fin: date) -> List[StockCell]:
        with self.engine.begin() as conn:
            rows = (
                conn.execute(
                    text(
                        """
                    SELECT date, stock
                      FROM accommodation_stock
                     WHERE id_hebergement=:acc AND date >= :debut AND date <= :fin
                       AND stock IS NOT NULL
                     ORDER BY date
                """
                    ),
                    {"acc": accommodation_id, "debut": debut.isoformat(), "fin": fin.isoformat()},
                )
                .mappings()
                .all()
            )
        return [
            StockCell(accommodation_id=accommodation_id, date=r["date"], available=r["stock"])
            for r in rows
        ]

    def upsert_stock(self, cells: Iterable[StockCell]) -> int:
        now = _now()
        n = 0
        with self.engine.begin() as conn:
            for c in cells:
                conn.execute(
                    text(
                        """
                    INSERT INTO accommodation_stock
                        (id, id_hebergement, date, stock, date_creation, date_modification)
                    VALUES (:id, :acc, :d, :stock, :now, :now)
                    ON CONFLICT (id_hebergement, date) DO UPDATE SET
                      stock=EXCLUDED.stock, date_modification=EXCLUDED.date_modification
                """
                    ),
                    {
                        "id": uuid.uuid4().hex,
                        "acc": c.accommodation_id,
                        "d": c.date.isoformat(),
                        "stock": c.available,
                        "now": now,
                    },
                )
                n += 1
        return n
