"""Payment repository - Database operations for payments"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Payment


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def get_payments(db: Session, reservation_id: Optional[int] = None) -> list[Payment]:
        query = db.query(Payment)
        if reservation_id:
            query = query.filter(Payment.reservation_id == reservation_id)
        return query.order_by(Payment.date_paiement.desc(), Payment.id.desc()).all()

    @staticmethod
    def get_payment_by_id(db: Session, payment_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.id == payment_id).first()

    @staticmethod
    def find_payment(db: Session, reservation_id: int, payment_type: str) -> Optional[Payment]:
        """First payment of the given type linked to the reservation"""
        return (
            db.query(Payment)
            .filter(Payment.reservation_id == reservation_id, Payment.type == payment_type)
            .first()
        )

    @staticmethod
    def create_payment(db: Session, **payment_data) -> Payment:
        payment = Payment(**payment_data)
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def delete_payment(db: Session, payment: Payment) -> None:
        db.delete(payment)
        db.commit()
