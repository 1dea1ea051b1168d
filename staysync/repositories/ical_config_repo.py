import uuid
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import quote

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..config import PUBLIC_BASE_URL
from ..db import engine as default_engine
from ..errors import ValidationError
from ..utils.schemas import PLATFORM_ORIGIN, CalendarSyncConfig, Platform


def export_url_for(base_url: str, accommodation_id: str, platform: Platform) -> str:
    return f"{base_url.rstrip('/')}/api/ical/export/{accommodation_id}/{quote(platform.value, safe='')}"


def _row_to_config(r) -> CalendarSyncConfig:
    return CalendarSyncConfig(
        id=r["id"],
        accommodation_id=r["id_hebergement"],
        platform=Platform.parse(r["platform"], strict=False),
        import_url=r["import_url"] or None,
        export_url=r["export_url"] or None,
    )


class IcalConfigRepo:
    def __init__(self, bind: Optional[Engine] = None, base_url: str = PUBLIC_BASE_URL):
        self.engine = bind or default_engine
        self.base_url = base_url

    def save(
        self,
        accommodation_id: str,
        platform: Platform,
        import_url: Optional[str] = None,
        export_url: Optional[str] = None,
    ) -> CalendarSyncConfig:
        """Create or replace the config of (accommodation, platform); derives the export URL when missing."""
        if import_url and PLATFORM_ORIGIN[platform] != "ical":
            raise ValidationError(f"{platform.value} bookings are not imported from a calendar")
        if import_url and not import_url.lower().startswith(("http://", "https://", "webcal://")):
            raise ValidationError(f"import URL must be http(s): {import_url!r}")
        if import_url and import_url.lower().startswith("webcal://"):
            import_url = "https://" + import_url[len("webcal://"):]
        export_url = export_url or export_url_for(self.base_url, accommodation_id, platform)
        now = datetime.now(timezone.utc).isoformat(timespec="seconds")

        with self.engine.begin() as conn:
            conn.execute(
                text(
                    """
                INSERT INTO ical_sync_config
                    (id, id_hebergement, platform, import_url, export_url, date_creation, date_modification)
                VALUES (:id, :acc, :pf, :imp, :exp, :now, :now)
                ON CONFLICT (id_hebergement, platform) DO UPDATE SET
                  import_url=EXCLUDED.import_url, export_url=EXCLUDED.export_url,
                  date_modification=EXCLUDED.date_modification
            """
                ),
                {
                    "id": uuid.uuid4().hex,
                    "acc": accommodation_id,
                    "pf": platform.value,
                    "imp": import_url or None,
                    "exp": export_url,
                    "now": now,
                },
            )
        return self.load(accommodation_id, platform)

    def load(self, accommodation_id: str, platform: Platform) -> Optional[CalendarSyncConfig]:
        with self.engine.begin() as conn:
            r = (
                conn.execute(
                    text(
                        """
                    SELECT id, id_hebergement, platform, import_url, export_url
                      FROM ical_sync_config
                     WHERE id_hebergement=:acc AND platform=:pf
                """
                    ),
                    {"acc": accommodation_id, "pf": platform.value},
                )
                .mappings()
                .first()
            )
        return _row_to_config(r) if r else None

    def list_for_accommodation(self, accommodation_id: str) -> List[CalendarSyncConfig]:
        with self.engine.begin() as conn:
            rows = (
                conn.execute(
                    text(
                        """
                    SELECT id, id_hebergement, platform, import_url, export_url
                      FROM ical_sync_config
                     WHERE id_hebergement=:acc
                     ORDER BY platform
                """
                    ),
                    {"acc": accommodation_id},
                )
                .mappings()
                .all()
            )
        return [_row_to_config(r) for r in rows]

    def delete(self, accommodation_id: str, platform: Platform) -> bool:
        with self.engine.begin() as conn:
            res = conn.execute(
                text("DELETE FROM ical_sync_config WHERE id_hebergement=:acc AND platform=:pf"),
                {"acc": accommodation_id, "pf": platform.value},
            )
        return res.rowcount > 0
