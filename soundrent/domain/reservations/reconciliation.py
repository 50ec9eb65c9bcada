"""
Derived-record reconciliation
Brings payments and deliveries in line with a saved reservation's flags:
insert what is missing, remove what is no longer wanted, never duplicate.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    DELIVERY_EFFECTUEE,
    DELIVERY_EN_COURS,
    DELIVERY_LIVRAISON,
    DELIVERY_PREVUE,
    DELIVERY_RECUPERATION,
    PAYMENT_ACOMPTE,
    PAYMENT_SOLDE,
    Delivery,
    Payment,
    Reservation,
)
from ..deliveries.repository import DeliveryRepository
from ..payments.repository import PaymentRepository
from .pricing import ZERO, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHOD = "CB"
DEFAULT_EVENT_TIME = "14:00"
DEFAULT_PICKUP_TIME = "10:00"
PLACEHOLDER_POSTAL_CODE = "00000"

# Deliveries an operator has already started or finished are never removed automatically
ACTED_UPON_STATUTS = (DELIVERY_EN_COURS, DELIVERY_EFFECTUEE)


def reconcile_payments(
    db: Session, reservation: Reservation, today: Optional[date] = None
) -> list[Payment]:
    """
    Create the Acompte / Solde payment for each amount marked paid that has
    no payment of that type yet. Safe to call repeatedly.
    """
    repo = PaymentRepository()
    today = today or date.today()
    created = []

    for payment_type, paid, amount in (
        (PAYMENT_ACOMPTE, reservation.acompte_regle, reservation.acompte_du),
        (PAYMENT_SOLDE, reservation.solde_regle, reservation.solde_du),
    ):
        amount = to_decimal(amount)
        if not paid or amount <= ZERO:
            continue

        if repo.find_payment(db, reservation.id, payment_type):
            logger.debug(f"ℹ️ {payment_type} already recorded for {reservation.ref}")
            continue

        payment = repo.create_payment(
            db,
            reservation_id=reservation.id,
            type=payment_type,
            montant_eur=amount,
            moyen=DEFAULT_PAYMENT_METHOD,
            date_paiement=today,
            notes=(
                f"{payment_type} créé automatiquement lors de la sauvegarde "
                f"de la réservation {reservation.ref}"
            ),
        )
        created.append(payment)
        logger.info(f"✅ {payment_type} payment of {amount}€ created for {reservation.ref}")

    return created


def desired_deliveries(reservation: Reservation, pack_name: Optional[str] = None) -> dict[str, dict]:
    """Delivery rows the reservation's flags call for, keyed by delivery type"""
    zone = reservation.ville_zone or ""
    base_notes = f"Pack: {pack_name or 'N/A'} | Réf: {reservation.ref or 'N/A'}"
    base = {
        "reservation_id": reservation.id,
        "statut": DELIVERY_PREVUE,
        "adresse": reservation.adresse_event or "",
        "ville": zone,
        "code_postal": PLACEHOLDER_POSTAL_CODE,
        "contact_nom": reservation.full_name or "Client",
        "contact_telephone": reservation.telephone or "",
    }

    desired = {}
    if reservation.livraison_aller:
        desired[DELIVERY_LIVRAISON] = {
            **base,
            "type": DELIVERY_LIVRAISON,
            "date_prevue": reservation.date_event,
            "heure_prevue": (reservation.heure_event or DEFAULT_EVENT_TIME)[:5],
            "notes": f"{base_notes} | Livraison aller vers {zone}",
        }

    if reservation.livraison_retour:
        pickup_date = reservation.date_fin_event
        if pickup_date is None and reservation.date_event is not None:
            pickup_date = reservation.date_event + timedelta(days=1)
        desired[DELIVERY_RECUPERATION] = {
            **base,
            "type": DELIVERY_RECUPERATION,
            "date_prevue": pickup_date,
            "heure_prevue": DEFAULT_PICKUP_TIME,
            "notes": f"{base_notes} | Récupération retour depuis {zone}",
        }

    return desired


@dataclass
class DeliveryChanges:
    created: list[Delivery] = field(default_factory=list)
    deleted: int = 0
    kept: list[Delivery] = field(default_factory=list)  # unwanted but already acted upon


def reconcile_deliveries(
    db: Session, reservation: Reservation, pack_name: Optional[str] = None
) -> DeliveryChanges:
    """Diff the wanted delivery types against the existing rows"""
    repo = DeliveryRepository()
    changes = DeliveryChanges()

    existing = repo.get_deliveries(db, reservation_id=reservation.id)
    existing_types = {d.type for d in existing}
    wanted = desired_deliveries(reservation, pack_name)

    to_create = [data for kind, data in wanted.items() if kind not in existing_types]
    if to_create:
        changes.created = repo.create_deliveries(db, to_create)
        logger.info(f"✅ {len(changes.created)} delivery record(s) created for {reservation.ref}")

    to_delete = []
    for delivery in existing:
        if delivery.type in wanted:
            continue
        if delivery.statut in ACTED_UPON_STATUTS:
            logger.warning(
                f"⚠️ Keeping {delivery.type} #{delivery.id} for {reservation.ref}: already {delivery.statut}"
            )
            changes.kept.append(delivery)
        else:
            to_delete.append(delivery)

    if to_delete:
        changes.deleted = repo.delete_deliveries(db, to_delete)
        logger.info(f"🗑️ {changes.deleted} delivery record(s) removed for {reservation.ref}")

    return changes
