"""Reservation domain schemas - Pydantic models for validation"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from ...models import (
    CAUTION_A_PERCEVOIR,
    CAUTION_STATUTS,
    RESERVATION_STATUTS,
    STATUT_CONFIRMEE,
    ZONE_PARIS,
    ZONES,
)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class ReservationForm(BaseModel):
    """Snapshot of the reservation edit form, used for drafts and final saves"""

    client_id: Optional[int] = None
    pack_id: Optional[int] = None
    date_event: Optional[date] = None
    date_fin_event: Optional[date] = None
    heure_event: Optional[str] = "14:00"
    heure_fin_event: Optional[str] = "18:00"
    ville_zone: str = ZONE_PARIS
    adresse_event: Optional[str] = None
    statut: str = STATUT_CONFIRMEE
    prix_total_ttc: Decimal = Decimal("0")
    acompte_du: Decimal = Decimal("0")
    acompte_regle: bool = False
    solde_regle: bool = False
    caution_eur: Decimal = Decimal("200")
    caution_statut: str = CAUTION_A_PERCEVOIR
    caution_retenue_eur: Decimal = Decimal("0")
    technicien_necessaire: bool = False
    livraison_aller: bool = False
    livraison_retour: bool = False
    remise_pourcentage: Decimal = Decimal("0")
    notes: Optional[str] = None

    @field_validator(
        "client_id",
        "pack_id",
        "date_event",
        "date_fin_event",
        "heure_event",
        "heure_fin_event",
        "adresse_event",
        "notes",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        # HTML forms send "" for untouched inputs
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator(
        "prix_total_ttc",
        "acompte_du",
        "caution_eur",
        "caution_retenue_eur",
        "remise_pourcentage",
        mode="before",
    )
    @classmethod
    def blank_amount_to_zero(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return Decimal("0")
        return v

    @field_validator("heure_event", "heure_fin_event")
    @classmethod
    def validate_time(cls, v):
        if v is None:
            return v
        v = v.strip()[:5]
        if not TIME_PATTERN.match(v):
            raise ValueError("Time must use the HH:MM format")
        return v

    @field_validator("ville_zone")
    @classmethod
    def validate_zone(cls, v):
        if v not in ZONES:
            raise ValueError(f"ville_zone must be one of: {', '.join(ZONES)}")
        return v

    @field_validator("statut")
    @classmethod
    def validate_statut(cls, v):
        if v not in RESERVATION_STATUTS:
            raise ValueError(f"statut must be one of: {', '.join(RESERVATION_STATUTS)}")
        return v

    @field_validator("caution_statut")
    @classmethod
    def validate_caution_statut(cls, v):
        if v not in CAUTION_STATUTS:
            raise ValueError(f"caution_statut must be one of: {', '.join(CAUTION_STATUTS)}")
        return v


class PricingPreviewResponse(BaseModel):
    total: Decimal
    solde_du: Decimal
    delivery_cost: Decimal
    technicien_cost: Decimal
    caution_retenue: Decimal
    remise_montant: Decimal
    deadline_paiement: Optional[datetime] = None


class ReservationResponse(BaseModel):
    """Schema for reservation response"""

    id: int
    ref: Optional[str]
    client_id: Optional[int]
    pack_id: Optional[int]
    full_name: Optional[str]
    email: Optional[str]
    telephone: Optional[str]
    date_event: Optional[date]
    date_fin_event: Optional[date]
    heure_event: Optional[str]
    heure_fin_event: Optional[str]
    ville_zone: str
    adresse_event: Optional[str]
    statut: str
    is_draft: bool
    prix_total_ttc: Decimal
    remise_pourcentage: Decimal
    technicien_necessaire: bool
    livraison_aller: bool
    livraison_retour: bool
    caution_eur: Decimal
    caution_statut: str
    caution_retenue_eur: Decimal
    acompte_du: Decimal
    acompte_regle: bool
    solde_du: Decimal
    solde_regle: bool
    deadline_paiement: Optional[datetime]
    notes: Optional[str]
    draft_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SaveResponse(BaseModel):
    """Result of a final save. Warnings mean the reservation is saved but a follow-up step failed."""

    reservation: ReservationResponse
    created: bool
    payments_created: int = 0
    deliveries_created: int = 0
    deliveries_deleted: int = 0
    calendar_providers: list[str] = []
    warnings: list[str] = []


class AutosaveResponse(BaseModel):
    saved: bool
    draft: Optional[ReservationResponse] = None
