"""Delivery domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...models import DELIVERY_STATUTS


class DeliveryUpdate(BaseModel):
    """Operator update: progress the statut, or reschedule"""

    statut: Optional[str] = None
    date_prevue: Optional[date] = None
    heure_prevue: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("statut")
    @classmethod
    def validate_statut(cls, v):
        if v is not None and v not in DELIVERY_STATUTS:
            raise ValueError(f"statut must be one of: {', '.join(DELIVERY_STATUTS)}")
        return v


class DeliveryResponse(BaseModel):
    id: int
    reservation_id: int
    type: str
    statut: str
    date_prevue: Optional[date]
    heure_prevue: Optional[str]
    adresse: Optional[str]
    ville: Optional[str]
    code_postal: Optional[str]
    contact_nom: Optional[str]
    contact_telephone: Optional[str]
    notes: Optional[str]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
