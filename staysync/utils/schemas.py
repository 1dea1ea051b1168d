from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..errors import ValidationError


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -------- Enumerations --------


class Platform(str, Enum):
    DIRECTE = "Directe"
    OPENPRO = "OpenPro"
    BOOKING_COM = "Booking.com"
    AIRBNB = "Airbnb"
    XOTELIA = "Xotelia"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any, strict: bool = True) -> "Platform":
        if isinstance(value, cls):
            return value
        s = str(value or "").strip().lower()
        for p in cls:
            if p.value.lower() == s or p.name.lower() == s:
                return p
        if strict:
            raise ValidationError(f"unknown platform: {value!r}")
        return cls.UNKNOWN


class BookingStatus(str, Enum):
    QUOTE = "Quote"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"

    @classmethod
    def from_db(cls, value: Any) -> "BookingStatus":
        s = str(value or "").strip()
        if s in _LEGACY_STATUS:
            return _LEGACY_STATUS[s]
        try:
            return cls(s)
        except ValueError:
            raise ValidationError(f"unknown booking status: {value!r}")


# Older rows use the French default and the since-merged payment states.
_LEGACY_STATUS: Dict[str, BookingStatus] = {
    "Devis": BookingStatus.QUOTE,
    "Paid": BookingStatus.CONFIRMED,
    "Past": BookingStatus.CONFIRMED,
}

# Statuses only move forward: Quote -> Confirmed -> Cancelled.
STATUS_RANK: Dict[BookingStatus, int] = {
    BookingStatus.QUOTE: 0,
    BookingStatus.CONFIRMED: 1,
    BookingStatus.CANCELLED: 2,
}

# Whether a booking in this status blocks dates in a published calendar.
STATUS_EXPORTABLE: Dict[BookingStatus, bool] = {
    BookingStatus.QUOTE: True,
    BookingStatus.CONFIRMED: True,
    BookingStatus.CANCELLED: False,
}

# Where a platform's bookings come from.
PLATFORM_ORIGIN: Dict[Platform, str] = {
    Platform.DIRECTE: "local",
    Platform.OPENPRO: "remote_api",
    Platform.BOOKING_COM: "ical",
    Platform.AIRBNB: "ical",
    Platform.XOTELIA: "ical",
    Platform.UNKNOWN: "ical",
}


def can_transition(current: BookingStatus, new: BookingStatus) -> bool:
    return STATUS_RANK[new] >= STATUS_RANK[current]


def forward_status(current: BookingStatus, new: BookingStatus) -> BookingStatus:
    """The furthest of two statuses; never moves a booking backwards."""
    return new if can_transition(current, new) else current


# -------- Directory / catalog --------


class Accommodation(_Camel):
    id: str
    name: str
    external_ids: Dict[Platform, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _directe_is_internal_id(self):
        self.external_ids[Platform.DIRECTE] = self.id
        return self

    @property
    def openpro_id(self) -> Optional[int]:
        raw = self.external_ids.get(Platform.OPENPRO)
        try:
            return int(raw) if raw not in (None, "") else None
        except ValueError:
            return None


class RateType(_Camel):
    id: str
    external_rate_type_id: Optional[int] = None
    label: Any = None  # str | [{langue, texte}] | {lang: text}
    description: Any = None
    order: Optional[int] = None


class RateGridCell(_Camel):
    accommodation_id: str
    rate_type_id: str
    date: date
    price: Optional[float] = None
    min_stay: Optional[int] = None
    max_stay: Optional[int] = None
    arrival_allowed: Optional[bool] = None
    departure_allowed: Optional[bool] = None
    promotion_active: Optional[bool] = None
    label: Optional[str] = None  # tarif-level label, remote source only


class StockCell(_Camel):
    accommodation_id: str
    date: date
    available: int


class CalendarSyncConfig(_Camel):
    id: Optional[str] = None
    accommodation_id: str
    platform: Platform
    import_url: Optional[str] = None
    export_url: Optional[str] = None


# -------- Bookings --------


class Booking(_Camel):
    booking_id: str
    accommodation_id: str
    arrival_date: date
    departure_date: date
    reference: Optional[str] = None
    platform: Platform = Platform.UNKNOWN
    status: BookingStatus = BookingStatus.CONFIRMED
    client_first_name: Optional[str] = None
    client_last_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    total_amount: Optional[float] = None
    number_of_persons: Optional[int] = None
    currency: Optional[str] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _dates_ordered(self):
        if self.departure_date <= self.arrival_date:
            raise ValueError("departure_date must be after arrival_date")
        return self

    @computed_field
    @property
    def number_of_nights(self) -> int:
        return (self.departure_date - self.arrival_date).days

    @computed_field
    @property
    def client_name(self) -> Optional[str]:
        parts = [p for p in (self.client_first_name, self.client_last_name) if p]
        return " ".join(parts) if parts else None

    @property
    def dedup_key(self) -> Optional[tuple]:
        if not self.reference:
            return None
        return (self.reference, self.platform)


class BookingCreate(_Camel):
    accommodation_id: str
    arrival_date: date
    departure_date: date
    reference: Optional[str] = None
    platform: Platform = Platform.DIRECTE
    status: BookingStatus = BookingStatus.QUOTE
    client_first_name: Optional[str] = None
    client_last_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    total_amount: Optional[float] = Field(default=None, ge=0)
    number_of_persons: int = Field(default=2, ge=1)

    @field_validator("reference")
    @classmethod
    def strip_reference(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class StatusUpdate(BaseModel):
    status: BookingStatus


class SyncConfigIn(_Camel):
    import_url: Optional[str] = None
    export_url: Optional[str] = None


class ExternalIdIn(_Camel):
    platform: str
    external_id: str


# -------- Rate and stock writes --------


class DateUpdate(_Camel):
    """One edited grid cell. Older clients send the French field names."""

    date: date
    rate_type_id: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    min_duration: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("minDuration", "dureeMin", "min_duration")
    )
    arrival_allowed: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("arrivalAllowed", "arriveeAutorisee", "arrival_allowed")
    )


class AccommodationUpdate(_Camel):
    accommodation_id: str
    dates: List[DateUpdate] = Field(default_factory=list)


class BulkUpdateRequest(_Camel):
    accommodations: List[AccommodationUpdate]


class StockDay(BaseModel):
    date: date
    dispo: int


class StockUpdate(BaseModel):
    jours: List[StockDay] = Field(default_factory=list)


# -------- Aggregated view --------


class SupplierData(_Camel):
    stock: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    rates: Dict[str, Dict[str, Dict[str, float]]] = Field(default_factory=dict)
    promo: Dict[str, Dict[str, bool]] = Field(default_factory=dict)
    rate_types: Dict[str, Dict[str, List[str]]] = Field(default_factory=dict)
    min_duration: Dict[str, Dict[str, Dict[str, Optional[int]]]] = Field(default_factory=dict)
    arrival_allowed: Dict[str, Dict[str, Dict[str, bool]]] = Field(default_factory=dict)
    rate_type_labels: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    rate_types_list: Dict[str, List[RateType]] = Field(default_factory=dict)
    bookings: Dict[str, List[Booking]] = Field(default_factory=dict)
    rate_type_links_by_accommodation: Dict[str, List[str]] = Field(default_factory=dict)
    # accommodation id -> steps that fell back to an empty default
    failures: Dict[str, List[str]] = Field(default_factory=dict)
