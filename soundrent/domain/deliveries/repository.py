"""Delivery repository - Database operations for deliveries"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Delivery


class DeliveryRepository:
    """Repository for delivery database operations"""

    @staticmethod
    def get_deliveries(
        db: Session,
        reservation_id: Optional[int] = None,
        statut: Optional[str] = None,
    ) -> list[Delivery]:
        query = db.query(Delivery)
        if reservation_id:
            query = query.filter(Delivery.reservation_id == reservation_id)
        if statut:
            query = query.filter(Delivery.statut == statut)
        return query.order_by(Delivery.date_prevue.asc(), Delivery.heure_prevue.asc()).all()

    @staticmethod
    def get_delivery_by_id(db: Session, delivery_id: int) -> Optional[Delivery]:
        return db.query(Delivery).filter(Delivery.id == delivery_id).first()

    @staticmethod
    def create_deliveries(db: Session, deliveries: list[dict]) -> list[Delivery]:
        """Insert several deliveries in one transaction"""
        created = [Delivery(**data) for data in deliveries]
        db.add_all(created)
        db.commit()
        for delivery in created:
            db.refresh(delivery)
        return created

    @staticmethod
    def delete_deliveries(db: Session, deliveries: list[Delivery]) -> int:
        for delivery in deliveries:
            db.delete(delivery)
        db.commit()
        return len(deliveries)

    @staticmethod
    def update_delivery(db: Session, delivery: Delivery, **updates) -> Delivery:
        for key, value in updates.items():
            if value is not None and hasattr(delivery, key):
                setattr(delivery, key, value)
        db.commit()
        db.refresh(delivery)
        return delivery
