import asyncio

from conftest import SUPPLIER
from staysync.context import RequestContext
from staysync.services.accommodation_check import check_remote_accommodations
from staysync.utils.schemas import Platform


def test_missing_and_unmapped_accommodations(repos, fake_api):
    listed = repos.accommodations.create("Gîte", {Platform.OPENPRO: "77"})
    gone = repos.accommodations.create("Cabane", {Platform.OPENPRO: "78"})
    repos.accommodations.create("Yourte")
    fake_api.accommodations = {
        "listeHebergement": [
            {"cleHebergement": {"idHebergement": 77}, "nom": "Gîte"},
            {"idHebergement": 90, "nom": [{"langue": "fr", "texte": "Roulotte"}]},
            {"nom": "sans id"},
        ]
    }
    out = asyncio.run(check_remote_accommodations(fake_api, repos.accommodations, SUPPLIER, RequestContext()))
    assert out == {"remote": 2, "missing": [gone.id], "unmapped": [{"remote_id": 90, "name": "Roulotte"}]}
    assert listed.id not in out["missing"]


def test_mapping_an_id_clears_the_warning(repos, fake_api):
    acc = repos.accommodations.create("Roulotte")
    fake_api.accommodations = {"hebergements": [{"idHebergement": 90}]}
    repos.accommodations.set_external_id(acc.id, Platform.OPENPRO, "90")
    out = asyncio.run(check_remote_accommodations(fake_api, repos.accommodations, SUPPLIER, RequestContext()))
    assert out == {"remote": 1, "missing": [], "unmapped": []}
