import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("on", "true", "1", "yes")


def _csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [p.strip() for p in raw.split(",") if p.strip()]


# --- Storage ---
DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///./staysync.db"
REDIS_URL = os.getenv("REDIS_URL")  # unset -> in-process store

# --- Supplier / remote API ---
SUPPLIER_ID = int(os.getenv("SUPPLIER_ID", "47186"))
OPENPRO_BASE_URL = os.getenv("OPENPRO_BASE_URL", "")
OPENPRO_API_KEY = os.getenv("OPENPRO_API_KEY", "")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))
HTTP_RETRIES = int(os.getenv("HTTP_RETRIES", "3"))

# --- Calendar sync ---
# Platforms whose own calendar is authoritative: never re-broadcast their bookings.
ICAL_EXPORT_EXCLUDED_PLATFORMS = _csv("ICAL_EXPORT_EXCLUDED_PLATFORMS", "Booking.com,Airbnb")
ICAL_CANCEL_MISSING = _flag("ICAL_CANCEL_MISSING", "on")
ICAL_USER_AGENT = os.getenv("ICAL_USER_AGENT", "staysync/0.1")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
SYNC_HISTORY_MAX = int(os.getenv("SYNC_HISTORY_MAX", "20"))
CRON_HEADER = os.getenv("CRON_HEADER", "X-Cron")

# --- Aggregation ---
AGGREGATOR_CONCURRENCY = int(os.getenv("AGGREGATOR_CONCURRENCY", "4"))
GRID_SOURCE = os.getenv("GRID_SOURCE", "local")  # local | remote

# --- Remote writes ---
# Send locally taken bookings to the remote API as dossiers.
BOOKING_PUSH = _flag("BOOKING_PUSH", "off")

# --- Feature flags ---
OBS_ON = _flag("OBS_ON", "on")
LOG_JSON = _flag("LOG_JSON", "off")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
