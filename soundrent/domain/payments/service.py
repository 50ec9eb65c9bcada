"""Payment service - Business logic for payment operations"""

import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...events import RESERVATION_PAYMENT_UPDATED, EventBus, get_event_bus
from ...models import Payment, Reservation
from .receipt_pdf import ReceiptPDFGenerator
from .repository import PaymentRepository
from .schemas import PaymentCreate

logger = logging.getLogger(__name__)


class PaymentService:
    """Service layer for payment business logic"""

    def __init__(self, db: Session, events: Optional[EventBus] = None):
        self.db = db
        self.repo = PaymentRepository()
        self.events = events or get_event_bus()

    def get_payments(self, reservation_id: Optional[int] = None) -> list[Payment]:
        return self.repo.get_payments(self.db, reservation_id=reservation_id)

    def get_payment(self, payment_id: int) -> Payment:
        payment = self.repo.get_payment_by_id(self.db, payment_id)
        if not payment:
            raise HTTPException(status_code=404, detail="Payment not found")
        return payment

    def create_payment(self, data: PaymentCreate) -> Payment:
        """Record a payment entered by hand (any type, no duplicate check)"""
        reservation = self.db.query(Reservation).filter(Reservation.id == data.reservation_id).first()
        if not reservation:
            raise HTTPException(status_code=404, detail="Reservation not found")

        payment = self.repo.create_payment(
            self.db,
            reservation_id=reservation.id,
            type=data.type,
            montant_eur=data.montant_eur,
            moyen=data.moyen,
            date_paiement=data.date_paiement or date.today(),
            notes=data.notes,
        )
        logger.info(f"✅ {payment.type} payment of {payment.montant_eur}€ recorded for {reservation.ref}")

        self.events.publish(
            RESERVATION_PAYMENT_UPDATED,
            {"reservation_id": reservation.id, "payment_ids": [payment.id], "action": "create"},
        )
        return payment

    def delete_payment(self, payment_id: int) -> None:
        payment = self.get_payment(payment_id)
        reservation_id = payment.reservation_id
        self.repo.delete_payment(self.db, payment)
        logger.info(f"🗑️ Payment {payment_id} deleted")

        self.events.publish(
            RESERVATION_PAYMENT_UPDATED,
            {"reservation_id": reservation_id, "payment_ids": [payment_id], "action": "delete"},
        )

    def generate_receipt(self, payment_id: int) -> bytes:
        return ReceiptPDFGenerator(self.get_payment(payment_id)).generate()
