from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

# Dates are stored as TEXT 'YYYY-MM-DD', timestamps as ISO-8601 TEXT.


class AccommodationRow(SQLModel, table=True):
    __tablename__ = "accommodations"

    id: str = Field(primary_key=True)
    nom: str
    id_openpro: Optional[int] = Field(default=None, index=True)
    date_creation: Optional[str] = None
    date_modification: Optional[str] = None


class AccommodationExternalId(SQLModel, table=True):
    __tablename__ = "accommodation_external_ids"
    __table_args__ = (UniqueConstraint("id_hebergement", "platform"),)

    id: str = Field(primary_key=True)
    id_hebergement: str = Field(foreign_key="accommodations.id", index=True)
    platform: str
    external_id: str
    date_creation: Optional[str] = None
    date_modification: Optional[str] = None


class IcalSyncConfig(SQLModel, table=True):
    __tablename__ = "ical_sync_config"
    __table_args__ = (UniqueConstraint("id_hebergement", "platform"),)

    id: str = Field(primary_key=True)
    id_hebergement: str = Field(foreign_key="accommodations.id", index=True)
    platform: str
    import_url: Optional[str] = None
    export_url: Optional[str] = None
    date_creation: Optional[str] = None
    date_modification: Optional[str] = None


class RateTypeRow(SQLModel, table=True):
    __tablename__ = "rate_types"

    id: str = Field(primary_key=True)
    id_type_tarif: Optional[int] = Field(default=None, unique=True)
    libelle: Optional[str] = None  # JSON
    description: Optional[str] = None  # JSON
    ordre: Optional[int] = None
    date_creation: Optional[str] = None
    date_modification: Optional[str] = None


class AccommodationRateTypeLink(SQLModel, table=True):
    __tablename__ = "accommodation_rate_type_links"
    __table_args__ = (UniqueConstraint("id_hebergement", "id_rate_type"),)

    id: str = Field(primary_key=True)
    id_hebergement: str = Field(foreign_key="accommodations.id", index=True)
    id_rate_type: str = Field(foreign_key="rate_types.id")
    id_type_tarif: Optional[int] = None
    date_creation: Optional[str] = None


class AccommodationData(SQLModel, table=True):
    __tablename__ = "accommodation_data"
    __table_args__ = (UniqueConstraint("id_hebergement", "id_rate_type", "date"),)

    id: str = Field(primary_key=True)
    id_hebergement: str = Field(foreign_key="accommodations.id", index=True)
    id_rate_type: str = Field(foreign_key="rate_types.id")
    id_type_tarif: Optional[int] = None
    date: str
    prix_nuitee: Optional[float] = None
    arrivee_autorisee: Optional[bool] = None
    depart_autorise: Optional[bool] = None
    duree_minimale: Optional[int] = None
    duree_maximale: Optional[int] = None
    promotion_active: Optional[bool] = None
    libelle: Optional[str] = None
    date_creation: Optional[str] = None
    date_modification: Optional[str] = None


class AccommodationStock(SQLModel, table=True):
    __tablename__ = "accommodation_stock"
    __table_args__ = (UniqueConstraint("id_hebergement", "date"),)

    id: str = Field(primary_key=True)
    id_hebergement: str = Field(foreign_key="accommodations.id", index=True)
    date: str
    stock: Optional[int] = None
    date_creation: Optional[str] = None
    date_modification: Optional[str] = None


class LocalBooking(SQLModel, table=True):
    __tablename__ = "local_bookings"
    __table_args__ = (UniqueConstraint("reference", "reservation_platform"),)

    id: str = Field(primary_key=True)
    id_fournisseur: int
    id_hebergement: str = Field(index=True)
    date_arrivee: str
    date_depart: str
    reference: Optional[str] = None
    reservation_platform: str = "Directe"
    booking_status: str = "Quote"
    client_nom: Optional[str] = None
    client_prenom: Optional[str] = None
    client_email: Optional[str] = None
    client_telephone: Optional[str] = None
    nb_personnes: Optional[int] = 2
    montant_total: Optional[float] = None
    currency: Optional[str] = None
    date_creation: Optional[str] = None
    date_modification: Optional[str] = None
