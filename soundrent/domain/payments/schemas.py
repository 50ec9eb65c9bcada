"""Payment domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from ...models import PAYMENT_TYPES


class PaymentCreate(BaseModel):
    """Manual payment entry"""

    reservation_id: int
    type: str
    montant_eur: Decimal
    moyen: str = "CB"
    date_paiement: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in PAYMENT_TYPES:
            raise ValueError(f"type must be one of: {', '.join(PAYMENT_TYPES)}")
        return v

    @field_validator("montant_eur")
    @classmethod
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError("montant_eur must be positive")
        return v

    @field_validator("moyen")
    @classmethod
    def validate_moyen(cls, v):
        if not v or not v.strip():
            raise ValueError("moyen is required")
        return v.strip()


class PaymentResponse(BaseModel):
    """Schema for payment response"""

    id: int
    reservation_id: int
    type: str
    montant_eur: Decimal
    moyen: str
    date_paiement: date
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
