import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import select

from ..db import get_session
from ..errors import NotFoundError, ValidationError
from ..models import AccommodationExternalId, AccommodationRow
from ..utils.schemas import Accommodation, Platform


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class AccommodationsRepo:
    """Internal accommodations and their per-platform identifiers."""

    def __init__(self, bind: Optional[Engine] = None):
        self.bind = bind

    def _to_model(self, row: AccommodationRow, ext: List[AccommodationExternalId]) -> Accommodation:
        ids: Dict[Platform, str] = {}
        for e in ext:
            ids[Platform.parse(e.platform, strict=False)] = e.external_id
        if row.id_openpro is not None and Platform.OPENPRO not in ids:
            ids[Platform.OPENPRO] = str(row.id_openpro)
        return Accommodation(id=row.id, name=row.nom, external_ids=ids)

    def create(
        self,
        name: str,
        external_ids: Optional[Dict[Platform, str]] = None,
        accommodation_id: Optional[str] = None,
    ) -> Accommodation:
        if not name or not name.strip():
            raise ValidationError("accommodation name is required")
        acc_id = accommodation_id or uuid.uuid4().hex
        ids = {Platform.parse(p): str(v) for p, v in (external_ids or {}).items() if v not in (None, "")}
        if ids.get(Platform.DIRECTE, acc_id) != acc_id:
            raise ValidationError("the Directe id is the internal id and cannot be chosen")
        ids[Platform.DIRECTE] = acc_id
        openpro = ids.get(Platform.OPENPRO)
        if openpro is not None and not openpro.isdigit():
            raise ValidationError(f"OpenPro id must be numeric: {openpro!r}")

        now = _now()
        with get_session(self.bind) as session:
            session.add(
                AccommodationRow(
                    id=acc_id,
                    nom=name.strip(),
                    id_openpro=int(openpro) if openpro else None,
                    date_creation=now,
                    date_modification=now,
                )
            )
            session.flush()
            for platform, value in ids.items():
                session.add(
                    AccommodationExternalId(
                        id=uuid.uuid4().hex,
                        id_hebergement=acc_id,
                        platform=platform.value,
                        external_id=value,
                        date_creation=now,
                        date_modification=now,
                    )
                )
            session.commit()
        return Accommodation(id=acc_id, name=name.strip(), external_ids=ids)

    def load(self, accommodation_id: str) -> Accommodation:
        with get_session(self.bind) as session:
            row = session.get(AccommodationRow, accommodation_id)
            if row is None:
                raise NotFoundError(f"accommodation {accommodation_id} not found")
            ext = session.exec(
                select(AccommodationExternalId).where(
                    AccommodationExternalId.id_hebergement == accommodation_id
                )
            ).all()
            return self._to_model(row, list(ext))

    def list_all(self) -> List[Accommodation]:
        with get_session(self.bind) as session:
            rows = session.exec(select(AccommodationRow).order_by(AccommodationRow.nom)).all()
            ext = session.exec(select(AccommodationExternalId)).all()
            by_acc: Dict[str, List[AccommodationExternalId]] = {}
            for e in ext:
                by_acc.setdefault(e.id_hebergement, []).append(e)
            return [self._to_model(r, by_acc.get(r.id, [])) for r in rows]

    def find_by_platform_id(self, platform: Platform, external_id: str) -> Optional[Accommodation]:
        with get_session(self.bind) as session:
            hit = session.exec(
                select(AccommodationExternalId).where(
                    AccommodationExternalId.platform == platform.value,
                    AccommodationExternalId.external_id == str(external_id),
                )
            ).first()
            if hit is None and platform == Platform.OPENPRO and str(external_id).isdigit():
                row = session.exec(
                    select(AccommodationRow).where(AccommodationRow.id_openpro == int(external_id))
                ).first()
                acc_id = row.id if row else None
            else:
                acc_id = hit.id_hebergement if hit else None
        return self.load(acc_id) if acc_id else None

    def set_external_id(self, accommodation_id: str, platform: Platform, external_id: str) -> Accommodation:
        if platform == Platform.DIRECTE:
            raise ValidationError("the Directe id is immutable")
        external_id = str(external_id).strip()
        if not external_id:
            raise ValidationError("external id is required")
        if platform == Platform.OPENPRO and not external_id.isdigit():
            raise ValidationError(f"OpenPro id must be numeric: {external_id!r}")

        now = _now()
        with get_session(self.bind) as session:
            row = session.get(AccommodationRow, accommodation_id)
            if row is None:
                raise NotFoundError(f"accommodation {accommodation_id} not found")
            ext = session.exec(
                select(AccommodationExternalId).where(
                    AccommodationExternalId.id_hebergement == accommodation_id,
                    AccommodationExternalId.platform == platform.value,
                )
            ).first()
            if ext is None:
                ext = AccommodationExternalId(
                    id=uuid.uuid4().hex,
                    id_hebergement=accommodation_id,
                    platform=platform.value,
                    external_id=external_id,
                    date_creation=now,
                )
            ext.external_id = external_id
            ext.date_modification = now
            session.add(ext)
            if platform == Platform.OPENPRO:
                row.id_openpro = int(external_id)
                row.date_modification = now
                session.add(row)
            session.commit()
        return self.load(accommodation_id)
