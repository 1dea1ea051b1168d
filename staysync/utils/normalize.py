"""
Field extraction for provider-shaped JSON.

The remote API returns the same concept under several names and nestings
(``libelle`` vs ``Libelle``, ``tarifPax`` vs ``prixPax``, ``fin`` vs
``"fin "``...). Each helper below walks an ordered list of candidates and
returns the first defined one. Nothing here performs I/O.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

DEFAULT_LANG = "fr"

_LANG_KEYS = ("langue", "Langue", "lang", "language")
_TEXT_KEYS = ("texte", "Texte", "text")


# -------- primitives --------


def first_defined(*candidates: Any) -> Any:
    for c in candidates:
        if c is not None:
            return c
    return None


def dig(obj: Any, *path: str) -> Any:
    """obj[path[0]][path[1]]... or None as soon as a level is missing."""
    cur = obj
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def to_float(x: Any) -> Optional[float]:
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        v = float(str(x).replace(",", ".").strip())
    except ValueError:
        return None
    return v if v == v else None  # drop NaN


def to_int(x: Any) -> Optional[int]:
    v = to_float(x)
    return int(v) if v is not None else None


def to_bool(x: Any) -> Optional[bool]:
    if x is None or x == "":
        return None
    if isinstance(x, bool):
        return x
    if isinstance(x, (int, float)):
        return x != 0
    s = str(x).strip().lower()
    if s in ("true", "1", "yes", "y", "oui"):
        return True
    if s in ("false", "0", "no", "n", "non"):
        return False
    return None


def to_date(x: Any) -> Optional[date]:
    if isinstance(x, date):
        return x
    s = str(x or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


# -------- multilingual --------


def _entry_lang(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    lang = first_defined(*(entry.get(k) for k in _LANG_KEYS))
    return str(lang).lower() if lang is not None else None


def _entry_text(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    txt = first_defined(*(entry.get(k) for k in _TEXT_KEYS))
    return str(txt) if txt not in (None, "") else None


def extract_text(field: Any, lang: str = DEFAULT_LANG) -> Optional[str]:
    """
    Text in ``lang`` from a multilingual field, or None.

    Accepted shapes: a plain string (taken as already localized), a list of
    ``{langue, texte}`` pairs, or a ``{lang: text}`` mapping.
    """
    if isinstance(field, str):
        return field or None
    lang = lang.lower()
    if isinstance(field, list):
        for entry in field:
            if _entry_lang(entry) == lang:
                return _entry_text(entry)
        return None
    if isinstance(field, dict):
        for k, v in field.items():
            if str(k).lower() == lang and v not in (None, ""):
                return str(v)
    return None


def extract_label(field: Any, lang: str = DEFAULT_LANG) -> Optional[str]:
    """Like extract_text, but falls back to the first available language."""
    txt = extract_text(field, lang)
    if txt:
        return txt
    if isinstance(field, list):
        for entry in field:
            t = _entry_text(entry)
            if t:
                return t
    if isinstance(field, dict):
        for v in field.values():
            if isinstance(v, str) and v:
                return v
    return None


# -------- rate periods ("tarifs") --------


def tarif_rate_type_id(tarif: Dict[str, Any]) -> Optional[int]:
    return to_int(
        first_defined(
            tarif.get("idTypeTarif"),
            dig(tarif, "typeTarif", "idTypeTarif"),
            dig(tarif, "cleTypeTarif", "idTypeTarif"),
            tarif.get("rateTypeId"),
            dig(tarif, "rateType", "rateTypeId"),
        )
    )


def tarif_dates(tarif: Dict[str, Any]) -> tuple[Optional[date], Optional[date]]:
    start = first_defined(tarif.get("debut"), tarif.get("dateDebut"), tarif.get("startDate"))
    # the API has been seen returning "fin " with a trailing space as key
    end = first_defined(
        tarif.get("fin"),
        tarif.get("fin "),
        tarif.get("dateFin"),
        tarif.get("dateFin "),
        tarif.get("endDate"),
    )
    return to_date(start), to_date(end)


def extract_price(tarif: Dict[str, Any]) -> Optional[float]:
    """
    Nightly price of a rate period, by priority:

    1. the occupation entry for 2 persons,
    2. any occupation entry carrying a price,
    3. the flat ``prix`` of the pax block, then of the period itself.
    """
    pax = first_defined(tarif.get("tarifPax"), tarif.get("prixPax"))
    occs = first_defined(
        dig(pax, "listeTarifPaxOccupation") if isinstance(pax, dict) else None,
        tarif.get("listeTarifPaxOccupation"),
    )
    if isinstance(occs, list):
        priced = [o for o in occs if isinstance(o, dict) and to_float(o.get("prix")) is not None]
        for o in priced:
            if to_int(o.get("nbPers")) == 2:
                return to_float(o["prix"])
        if priced:
            return to_float(priced[0]["prix"])

    if isinstance(pax, dict) and to_float(pax.get("prix")) is not None:
        return to_float(pax.get("prix"))
    return to_float(tarif.get("prix"))


def extract_rate_label(
    tarif: Dict[str, Any],
    rate_type_label: Optional[str] = None,
    rate_type_id: Optional[int] = None,
    lang: str = DEFAULT_LANG,
) -> Optional[str]:
    """
    Display label of a rate period: the rate type's own label, then the
    label carried by the period, then ``"Type {id}"``.
    """
    if rate_type_label:
        return rate_type_label
    explicit = extract_label(dig(tarif, "typeTarif", "libelle"), lang)
    if explicit:
        return explicit
    local = extract_label(first_defined(tarif.get("libelle"), tarif.get("Libelle")), lang)
    if local:
        return local
    if rate_type_id:
        return f"Type {rate_type_id}"
    return None


def promotion_active(tarif: Dict[str, Any]) -> bool:
    return any(
        bool(tarif.get(k)) for k in ("promotion", "promo", "promotionActive", "hasPromo")
    )


def min_stay(tarif: Dict[str, Any]) -> Optional[int]:
    v = to_int(first_defined(tarif.get("dureeMin"), tarif.get("dureeMinimale"), tarif.get("minDuration")))
    return v if v and v > 0 else None


def max_stay(tarif: Dict[str, Any]) -> Optional[int]:
    v = to_int(first_defined(tarif.get("dureeMax"), tarif.get("dureeMaximale"), tarif.get("maxDuration")))
    return v if v and v > 0 else None


def arrival_allowed(tarif: Dict[str, Any]) -> Optional[bool]:
    return to_bool(first_defined(tarif.get("arriveeAutorisee"), tarif.get("arrivalAllowed")))


def departure_allowed(tarif: Dict[str, Any]) -> Optional[bool]:
    return to_bool(first_defined(tarif.get("departAutorise"), tarif.get("departureAllowed")))


def tarif_list(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [t for t in payload if isinstance(t, dict)]
    if not isinstance(payload, dict):
        return []
    items = first_defined(
        payload.get("tarifs"),
        payload.get("listeTarif"),
        dig(payload, "data", "tarifs"),
        [],
    )
    return [t for t in items if isinstance(t, dict)]


# -------- stock --------


def extract_stock(payload: Any) -> Dict[date, int]:
    """
    ``{date: quantity}`` from a stock payload.

    Current shape is ``{listeStock: [{date, valeur}]}``; older ones are
    ``{jours: [{date, dispo}]}`` and ``{stock: [{jour, stock}]}``.
    Entries without a parsable date or quantity are dropped.
    """
    if not isinstance(payload, dict):
        return {}
    rows = first_defined(payload.get("listeStock"), payload.get("stock"), payload.get("jours"), [])
    out: Dict[date, int] = {}
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        d = to_date(first_defined(row.get("date"), row.get("jour")))
        qty = to_int(first_defined(row.get("valeur"), row.get("dispo"), row.get("stock")))
        if d is not None and qty is not None:
            out[d] = qty
    return out


# -------- rate types / links --------


def rate_type_fields(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    ext_id = to_int(first_defined(dig(raw, "cleTypeTarif", "idTypeTarif"), raw.get("idTypeTarif")))
    if not ext_id:
        return None
    return {
        "external_rate_type_id": ext_id,
        "label": first_defined(raw.get("libelle"), raw.get("Libelle")),
        "description": raw.get("description"),
        "order": to_int(raw.get("ordre")),
    }


def rate_type_list(payload: Any) -> List[Dict[str, Any]]:
    items = first_defined(dig(payload, "typeTarifs"), dig(payload, "data", "typeTarifs"), [])
    if isinstance(payload, list):
        items = payload
    out = []
    for raw in items if isinstance(items, list) else []:
        if isinstance(raw, dict) and (f := rate_type_fields(raw)):
            out.append(f)
    return out


def remote_accommodation_list(payload: Any) -> List[Dict[str, Any]]:
    """``{remote_id, name}`` of every accommodation in a listing; entries without an id are dropped."""
    items = first_defined(dig(payload, "hebergements"), dig(payload, "listeHebergement"), [])
    if isinstance(payload, list):
        items = payload
    out = []
    for raw in items if isinstance(items, list) else []:
        if not isinstance(raw, dict):
            continue
        remote_id = to_int(first_defined(raw.get("idHebergement"), dig(raw, "cleHebergement", "idHebergement")))
        if remote_id is None:
            continue
        name = extract_label(first_defined(raw.get("nom"), raw.get("nomHebergement")))
        out.append({"remote_id": remote_id, "name": name})
    return out


def linked_rate_type_ids(payload: Any) -> List[int]:
    items = first_defined(
        dig(payload, "liaisonHebergementTypeTarifs"),
        dig(payload, "data", "liaisonHebergementTypeTarifs"),
        [],
    )
    ids: List[int] = []
    for link in items if isinstance(items, list) else []:
        i = to_int(link.get("idTypeTarif")) if isinstance(link, dict) else None
        if i and i not in ids:
            ids.append(i)
    return ids


# -------- bookings ("dossiers") --------

_CANCELLED_MARKERS = ("annule", "annulé", "annulee", "annulée", "cancelled", "canceled")


def dossier_fields(dossier: Dict[str, Any]) -> Dict[str, Any]:
    """
    Canonical booking fields from a remote dossier.

    Dates, amount and pax come from the first accommodation of the dossier.
    ``remote_accommodation_id`` is the provider's id, still to be mapped to
    an internal one. Raises ValueError when the stay dates are missing.
    """
    stays = first_defined(dossier.get("listeHebergement"), [])
    first = stays[0] if isinstance(stays, list) and stays else {}
    arrival = to_date(dig(first, "sejour", "debut"))
    departure = to_date(dig(first, "sejour", "fin"))
    if arrival is None or departure is None:
        raise ValueError("dossier has no stay dates")

    contact = dossier.get("contact") or {}
    statut = str(dossier.get("statut") or "").strip().lower()
    ref = first_defined(dig(dossier, "cleDossier", "idDossier"), dossier.get("idDossier"))

    return {
        "remote_id": str(ref) if ref is not None else None,
        "remote_accommodation_id": to_int(dig(first, "cleHebergement", "idHebergement")),
        "arrival_date": arrival,
        "departure_date": departure,
        "reference": str(ref) if ref not in (None, "") else None,
        "cancelled": statut in _CANCELLED_MARKERS,
        "client_first_name": contact.get("prenom"),
        "client_last_name": contact.get("nom"),
        "client_email": contact.get("email"),
        "client_phone": first_defined(contact.get("telephone1"), contact.get("telephone")),
        "total_amount": to_float(first.get("montant")),
        "number_of_persons": to_int(dig(first, "pax", "nbPers")),
        "currency": dossier.get("devise"),
        "created_at": dossier.get("dateCreation") or None,
    }


def dossier_list(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [d for d in payload if isinstance(d, dict)]
    items = first_defined(
        dig(payload, "listeDossier"),
        dig(payload, "dossiers"),
        dig(payload, "data", "listeDossier"),
        [],
    )
    return [d for d in items if isinstance(d, dict)] if isinstance(items, list) else []


def iter_dates(start: date, end: date) -> Iterable[date]:
    """Every date of the inclusive range [start, end]."""
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)
