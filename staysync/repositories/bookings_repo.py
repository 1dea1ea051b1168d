import uuid
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from ..db import engine as default_engine
from ..errors import NotFoundError, ValidationError
from ..ical.parser import IcalEvent
from ..utils.schemas import (
    Booking,
    BookingCreate,
    BookingStatus,
    Platform,
    can_transition,
    forward_status,
)

_COLUMNS = """
    id, id_hebergement, date_arrivee, date_depart, reference,
    reservation_platform, booking_status, client_nom, client_prenom,
    client_email, client_telephone, nb_personnes, montant_total, currency,
    date_creation
"""

# reconcile outcomes
CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
CANCELLED = "cancelled"
SKIPPED_CANCELLED = "skipped_cancelled"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _lock(conn: Connection) -> str:
    # SQLite serializes writers on its own and has no row locks
    return " FOR UPDATE" if conn.dialect.name == "postgresql" else ""


def row_to_booking(row) -> Booking:
    return Booking(
        booking_id=row["id"],
        accommodation_id=row["id_hebergement"],
        arrival_date=row["date_arrivee"],
        departure_date=row["date_depart"],
        reference=row["reference"],
        platform=Platform.parse(row["reservation_platform"], strict=False),
        status=BookingStatus.from_db(row["booking_status"]),
        client_first_name=row["client_prenom"],
        client_last_name=row["client_nom"],
        client_email=row["client_email"],
        client_phone=row["client_telephone"],
        total_amount=row["montant_total"],
        number_of_persons=row["nb_personnes"],
        currency=row["currency"],
        created_at=row["date_creation"],
    )


class BookingsRepo:
    """
    Local booking store.

    Every write runs in its own transaction, so a reader never sees a
    half-applied record. ``(reference, reservation_platform)`` is unique.
    """

    def __init__(self, bind: Optional[Engine] = None, supplier_id: int = 0):
        self.engine = bind or default_engine
        self.supplier_id = supplier_id

    # -------- reads --------

    def get(self, booking_id: str) -> Booking:
        with self.engine.begin() as conn:
            row = (
                conn.execute(
                    text(f"SELECT {_COLUMNS} FROM local_bookings WHERE id=:bid"),
                    {"bid": booking_id},
                )
                .mappings()
                .first()
            )
        if not row:
            raise NotFoundError(f"booking {booking_id} not found")
        return row_to_booking(row)

    def list_for_accommodation(self, accommodation_id: str) -> List[Booking]:
        with self.engine.begin() as conn:
            rows = (
                conn.execute(
                    text(
                        f"""
                    SELECT {_COLUMNS}
                      FROM local_bookings
                     WHERE id_hebergement=:acc
                     ORDER BY date_arrivee, reference
                """
                    ),
                    {"acc": accommodation_id},
                )
                .mappings()
                .all()
            )
        return [row_to_booking(r) for r in rows]

    # -------- local writes --------

    def create(self, req: BookingCreate) -> Booking:
        if req.departure_date <= req.arrival_date:
            raise ValidationError("departure_date must be after arrival_date")

        booking_id = uuid.uuid4().hex
        reference = req.reference or booking_id
        now = _now()
        with self.engine.begin() as conn:
            taken = conn.execute(
                text(
                    """
                SELECT 1 FROM local_bookings
                 WHERE reference=:ref AND reservation_platform=:pf
            """
                ),
                {"ref": reference, "pf": req.platform.value},
            ).first()
            if taken:
                raise ValidationError(
                    f"a booking with reference {reference!r} already exists on {req.platform.value}"
                )
            conn.execute(
                text(
                    """
                INSERT INTO local_bookings
                    (id, id_fournisseur, id_hebergement, date_arrivee, date_depart,
                     reference, reservation_platform, booking_status,
                     client_nom, client_prenom, client_email, client_telephone,
                     nb_personnes, montant_total, date_creation, date_modification)
                VALUES
                    (:bid, :sup, :acc, :arr, :dep,
                     :ref, :pf, :st,
                     :nom, :prenom, :email, :tel,
                     :pax, :amount, :now, :now)
            """
                ),
                {
                    "bid": booking_id,
                    "sup": self.supplier_id,
                    "acc": req.accommodation_id,
                    "arr": req.arrival_date.isoformat(),
                    "dep": req.departure_date.isoformat(),
                    "ref": reference,
                    "pf": req.platform.value,
                    "st": req.status.value,
                    "nom": req.client_last_name,
                    "prenom": req.client_first_name,
                    "email": req.client_email,
                    "tel": req.client_phone,
                    "pax": req.number_of_persons,
                    "amount": req.total_amount,
                    "now": now,
                },
            )
        return self.get(booking_id)

    def transition_status(self, booking_id: str, new_status: BookingStatus) -> Booking:
        """Move a booking forward in Quote -> Confirmed -> Cancelled. Same status is a no-op."""
        with self.engine.begin() as conn:
            row = (
                conn.execute(
                    text(f"SELECT id, booking_status FROM local_bookings WHERE id=:bid{_lock(conn)}"),
                    {"bid": booking_id},
                )
                .mappings()
                .first()
            )
            if not row:
                raise NotFoundError(f"booking {booking_id} not found")
            current = BookingStatus.from_db(row["booking_status"])
            if not can_transition(current, new_status):
                raise ValidationError(
                    f"cannot move booking from {current.value} to {new_status.value}"
                )
            if current != new_status or row["booking_status"] != new_status.value:
                conn.execute(
                    text(
                        """
                    UPDATE local_bookings
                       SET booking_status=:st, date_modification=:now
                     WHERE id=:bid
                """
                    ),
                    {"st": new_status.value, "now": _now(), "bid": booking_id},
                )
        return self.get(booking_id)

    def delete(self, booking_id: str) -> Booking:
        """Remove a booking for good and return it as it was."""
        with self.engine.begin() as conn:
            row = (
                conn.execute(
                    text(f"SELECT {_COLUMNS} FROM local_bookings WHERE id=:bid{_lock(conn)}"),
                    {"bid": booking_id},
                )
                .mappings()
                .first()
            )
            if not row:
                raise NotFoundError(f"booking {booking_id} not found")
            conn.execute(text("DELETE FROM local_bookings WHERE id=:bid"), {"bid": booking_id})
        return row_to_booking(row)

    # -------- calendar imports --------

    def _find_for_update(self, conn: Connection, reference: str, platform: Platform):
        return (
            conn.execute(
                text(
                    f"""
                SELECT id, date_arrivee, date_depart, booking_status
                  FROM local_bookings
                 WHERE reference=:ref AND reservation_platform=:pf{_lock(conn)}
            """
                ),
                {"ref": reference, "pf": platform.value},
            )
            .mappings()
            .first()
        )

    def reconcile_imported(self, accommodation_id: str, platform: Platform, event: IcalEvent) -> str:
        """
        Upsert one calendar event as a local booking, in one transaction.

        A booking already Cancelled is never touched. Re-applying the same
        event returns ``unchanged`` and writes nothing.
        """
        reference = event.uid
        target = BookingStatus.CANCELLED if event.cancelled else BookingStatus.CONFIRMED
        arr, dep = event.start_date.isoformat(), event.end_date.isoformat()
        now = _now()

        with self.engine.begin() as conn:
            existing = self._find_for_update(conn, reference, platform)
            if existing is None:
                inserted = conn.execute(
                    text(
                        """
                    INSERT INTO local_bookings
                        (id, id_fournisseur, id_hebergement, date_arrivee, date_depart,
                         reference, reservation_platform, booking_status,
                         nb_personnes, date_creation, date_modification)
                    VALUES
                        (:bid, :sup, :acc, :arr, :dep, :ref, :pf, :st, NULL, :now, :now)
                    ON CONFLICT (reference, reservation_platform) DO NOTHING
                """
                    ),
                    {
                        "bid": uuid.uuid4().hex,
                        "sup": self.supplier_id,
                        "acc": accommodation_id,
                        "arr": arr,
                        "dep": dep,
                        "ref": reference,
                        "pf": platform.value,
                        "st": target.value,
                        "now": now,
                    },
                )
                if inserted.rowcount == 1:
                    return CREATED
                # lost a race with a concurrent import of the same record
                existing = self._find_for_update(conn, reference, platform)

            current = BookingStatus.from_db(existing["booking_status"])
            if current == BookingStatus.CANCELLED:
                return SKIPPED_CANCELLED

            new_status = forward_status(current, target)
            same_dates = str(existing["date_arrivee"]) == arr and str(existing["date_depart"]) == dep
            if same_dates and new_status == current:
                return UNCHANGED

            conn.execute(
                text(
                    """
                UPDATE local_bookings
                   SET date_arrivee=:arr, date_depart=:dep,
                       booking_status=:st, date_modification=:now
                 WHERE id=:bid
            """
                ),
                {"arr": arr, "dep": dep, "st": new_status.value, "now": now, "bid": existing["id"]},
            )
        return CANCELLED if new_status == BookingStatus.CANCELLED else UPDATED

    def cancel_missing(
        self,
        accommodation_id: str,
        platform: Platform,
        present_references: Iterable[str],
        today: date,
    ) -> List[str]:
        """
        Cancel the accommodation's bookings on ``platform`` that a complete feed
        no longer lists. Stays that ended before ``today`` are left alone.
        Returns the cancelled references.
        """
        keep = set(present_references)
        cancelled: List[str] = []
        with self.engine.begin() as conn:
            rows = (
                conn.execute(
                    text(
                        f"""
                    SELECT id, reference, booking_status
                      FROM local_bookings
                     WHERE id_hebergement=:acc AND reservation_platform=:pf
                       AND date_depart >= :today{_lock(conn)}
                """
                    ),
                    {"acc": accommodation_id, "pf": platform.value, "today": today.isoformat()},
                )
                .mappings()
                .all()
            )
            for r in rows:
                if r["reference"] in keep:
                    continue
                if BookingStatus.from_db(r["booking_status"]) == BookingStatus.CANCELLED:
                    continue
                conn.execute(
                    text(
                        """
                    UPDATE local_bookings
                       SET booking_status=:st, date_modification=:now
                     WHERE id=:bid
                """
                    ),
                    {"st": BookingStatus.CANCELLED.value, "now": _now(), "bid": r["id"]},
                )
                cancelled.append(r["reference"])
        return cancelled
