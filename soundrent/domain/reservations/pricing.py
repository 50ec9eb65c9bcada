"""
Reservation pricing - pure functions, no I/O

total   = (base + delivery + technician + retained caution) * (1 - discount%)
solde   = max(0, total - acompte)
deadline = event date - 72h
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

from ...models import (
    CAUTION_A_PERCEVOIR,
    CAUTION_PARTIELLEMENT_RETENUE,
    ZONE_PARIS,
    ZONE_RETRAIT,
)

Money = Union[Decimal, int, float, str, None]

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

DELIVERY_UNIT_PARIS = Decimal("40")
DELIVERY_UNIT_OUTSIDE_PARIS = Decimal("80")
TECHNICIEN_FEE = Decimal("80")
PAYMENT_DEADLINE_OFFSET = timedelta(hours=72)


def to_decimal(value: Money) -> Decimal:
    """Coerce form input to Decimal; blanks count as zero"""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so 0.1 stays 0.1 and not its binary expansion
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid monetary amount: {value!r}") from e


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_discount(remise_pourcentage: Money) -> Decimal:
    return min(HUNDRED, max(ZERO, to_decimal(remise_pourcentage)))


def retained_caution(caution_statut: Optional[str], caution_retenue_eur: Money, caution_eur: Money) -> Decimal:
    """Retained deposit only counts when partially retained, and never exceeds the deposit"""
    if caution_statut != CAUTION_PARTIELLEMENT_RETENUE:
        return ZERO
    ceiling = max(ZERO, to_decimal(caution_eur))
    return min(ceiling, max(ZERO, to_decimal(caution_retenue_eur)))


def delivery_cost(zone: Optional[str], livraison_aller: bool, livraison_retour: bool) -> Decimal:
    if zone == ZONE_RETRAIT:
        return ZERO
    unit = DELIVERY_UNIT_PARIS if zone == ZONE_PARIS else DELIVERY_UNIT_OUTSIDE_PARIS
    return (unit if livraison_aller else ZERO) + (unit if livraison_retour else ZERO)


@dataclass(frozen=True)
class PricingInput:
    base_price: Decimal
    zone: str = ZONE_PARIS
    livraison_aller: bool = False
    livraison_retour: bool = False
    technicien_necessaire: bool = False
    remise_pourcentage: Decimal = ZERO
    caution_statut: str = CAUTION_A_PERCEVOIR
    caution_eur: Decimal = ZERO
    caution_retenue_eur: Decimal = ZERO
    acompte_du: Decimal = ZERO

    @classmethod
    def from_reservation(cls, source: Any) -> "PricingInput":
        """Build from anything shaped like a reservation (ORM row or form schema)"""
        return cls(
            base_price=to_decimal(source.prix_total_ttc),
            zone=source.ville_zone or ZONE_PARIS,
            livraison_aller=bool(source.livraison_aller),
            livraison_retour=bool(source.livraison_retour),
            technicien_necessaire=bool(source.technicien_necessaire),
            remise_pourcentage=to_decimal(source.remise_pourcentage),
            caution_statut=source.caution_statut or CAUTION_A_PERCEVOIR,
            caution_eur=to_decimal(source.caution_eur),
            caution_retenue_eur=to_decimal(source.caution_retenue_eur),
            acompte_du=to_decimal(source.acompte_du),
        )


@dataclass(frozen=True)
class PricingResult:
    total: Decimal
    solde_du: Decimal
    delivery_cost: Decimal
    technicien_cost: Decimal
    caution_retenue: Decimal
    remise_pourcentage: Decimal
    remise_montant: Decimal


def compute_pricing(inp: PricingInput) -> PricingResult:
    """Total and balance due for a reservation, in a fixed order of operations"""
    livraison = delivery_cost(inp.zone, inp.livraison_aller, inp.livraison_retour)
    technicien = TECHNICIEN_FEE if inp.technicien_necessaire else ZERO
    caution = retained_caution(inp.caution_statut, inp.caution_retenue_eur, inp.caution_eur)

    subtotal = to_decimal(inp.base_price) + livraison + technicien + caution

    remise = clamp_discount(inp.remise_pourcentage)
    discounted = subtotal * (1 - remise / HUNDRED)

    total = max(ZERO, round_money(discounted))
    solde = max(ZERO, round_money(total - to_decimal(inp.acompte_du)))

    return PricingResult(
        total=total,
        solde_du=solde,
        delivery_cost=livraison,
        technicien_cost=technicien,
        caution_retenue=caution,
        remise_pourcentage=remise,
        remise_montant=round_money(subtotal - discounted),
    )


def compute_payment_deadline(date_event: Union[date, datetime, None]) -> Optional[datetime]:
    """Payment is due 72 hours before the event; no event date means no deadline"""
    if date_event is None:
        return None
    if not isinstance(date_event, datetime):
        date_event = datetime.combine(date_event, datetime.min.time())
    return date_event - PAYMENT_DEADLINE_OFFSET
