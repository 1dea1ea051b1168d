from datetime import date
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from staysync.api.server import app, build_services
from staysync.db import init_db, make_engine
from staysync.errors import UpstreamError
from staysync.repositories.accommodations_repo import AccommodationsRepo
from staysync.repositories.bookings_repo import BookingsRepo
from staysync.repositories.ical_config_repo import IcalConfigRepo
from staysync.repositories.rates_repo import RatesRepo
from staysync.utils.store import MemoryStore

SUPPLIER = 47186


def ics(*events, name=None):
    """Minimal calendar text; each event is (uid, dtstart, dtend[, extra lines])."""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//test//EN"]
    if name:
        lines.append(f"X-WR-CALNAME:{name}")
    for ev in events:
        uid, start, end, *extra = ev
        lines += ["BEGIN:VEVENT", f"UID:{uid}", "DTSTAMP:20250101T000000Z"]
        lines.append(start if ":" in start else f"DTSTART;VALUE=DATE:{start}")
        lines.append(end if ":" in end else f"DTEND;VALUE=DATE:{end}")
        lines.append("SUMMARY:Reserved")
        lines += extra
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


class FakeApi:
    """In-memory stand-in for the remote reservation API."""

    def __init__(self):
        self.rate_types = {"typeTarifs": []}
        self.links = {}
        self.rates = {}
        self.stock = {}
        self.dossiers = {}
        self.failing = set()
        self.created = []
        self.rate_writes = []
        self.stock_writes = []
        self.accommodations = {"hebergements": []}
        self.calls = []

    def _hit(self, op, acc=None):
        self.calls.append((op, acc))
        if acc in self.failing:
            raise UpstreamError(f"{op} failed for {acc}", status_code=503)

    async def list_accommodations(self, supplier_id, ctx):
        self._hit("list_accommodations")
        return self.accommodations

    async def list_rate_types(self, supplier_id, ctx):
        self._hit("list_rate_types")
        return self.rate_types

    async def list_rate_type_links(self, supplier_id, accommodation_id, ctx):
        self._hit("list_rate_type_links", accommodation_id)
        return self.links.get(accommodation_id, {"liaisonHebergementTypeTarifs": []})

    async def get_rates(self, supplier_id, accommodation_id, debut, fin, ctx):
        self._hit("get_rates", accommodation_id)
        return self.rates.get(accommodation_id, {"tarifs": []})

    async def get_stock(self, supplier_id, accommodation_id, debut, fin, ctx):
        self._hit("get_stock", accommodation_id)
        return self.stock.get(accommodation_id, {"listeStock": []})

    async def list_bookings(self, supplier_id, accommodation_id, ctx):
        ctx.check()
        self._hit("list_bookings", accommodation_id)
        return {"listeDossier": self.dossiers.get(accommodation_id, [])}

    async def create_booking(self, supplier_id, payload, ctx):
        self._hit("create_booking", (payload.get("hebergement") or {}).get("idHebergement"))
        self.created.append(payload)
        return {"cleDossier": {"idDossier": len(self.created)}}

    async def set_rates(self, supplier_id, accommodation_id, payload, ctx):
        self._hit("set_rates", accommodation_id)
        self.rate_writes.append((accommodation_id, payload))
        return {"ok": 1}

    async def update_stock(self, supplier_id, accommodation_id, payload, ctx):
        self._hit("update_stock", accommodation_id)
        self.stock_writes.append((accommodation_id, payload))
        return {"ok": 1}


def dossier(ref, acc, arrival, departure, statut="confirme", **contact):
    return {
        "cleDossier": {"idDossier": ref},
        "statut": statut,
        "contact": contact,
        "devise": "EUR",
        "listeHebergement": [
            {
                "cleHebergement": {"idHebergement": acc},
                "sejour": {"debut": arrival, "fin": departure},
                "montant": 420.0,
                "pax": {"nbPers": 2},
            }
        ],
    }


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'staysync.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def repos(engine):
    return SimpleNamespace(
        accommodations=AccommodationsRepo(engine),
        bookings=BookingsRepo(engine, supplier_id=SUPPLIER),
        rates=RatesRepo(engine),
        configs=IcalConfigRepo(engine, base_url="https://sync.example.com"),
    )


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def feeds():
    """url -> calendar text, or an HTTP status code to answer with."""
    return {}


@pytest.fixture
def http(feeds):
    def handler(request: httpx.Request) -> httpx.Response:
        body = feeds.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        if isinstance(body, int):
            return httpx.Response(body)
        return httpx.Response(200, text=body, headers={"Content-Type": "text/calendar"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def today():
    return date(2025, 5, 1)


@pytest.fixture
def client(engine, http, fake_api):
    svc = build_services(
        bind=engine, api=fake_api, http=http, store=MemoryStore(), supplier_id=SUPPLIER, grid_source="local"
    )
    app.state.services = svc
    with TestClient(app) as c:
        yield c
    app.state.services = None
