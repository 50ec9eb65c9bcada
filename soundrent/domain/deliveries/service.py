"""Delivery service - Business logic for delivery operations"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...events import LIVRAISONS_UPDATED, EventBus, get_event_bus
from ...models import Delivery
from .repository import DeliveryRepository
from .schemas import DeliveryUpdate

logger = logging.getLogger(__name__)


class DeliveryService:
    """Service layer for delivery business logic"""

    def __init__(self, db: Session, events: Optional[EventBus] = None):
        self.db = db
        self.repo = DeliveryRepository()
        self.events = events or get_event_bus()

    def get_deliveries(self, reservation_id: Optional[int] = None, statut: Optional[str] = None) -> list[Delivery]:
        return self.repo.get_deliveries(self.db, reservation_id=reservation_id, statut=statut)

    def get_delivery(self, delivery_id: int) -> Delivery:
        delivery = self.repo.get_delivery_by_id(self.db, delivery_id)
        if not delivery:
            raise HTTPException(status_code=404, detail="Delivery not found")
        return delivery

    def update_delivery(self, delivery_id: int, data: DeliveryUpdate) -> Delivery:
        delivery = self.get_delivery(delivery_id)
        previous = delivery.statut
        delivery = self.repo.update_delivery(self.db, delivery, **data.model_dump(exclude_unset=True))

        if delivery.statut != previous:
            logger.info(f"✅ {delivery.type} #{delivery.id}: {previous} -> {delivery.statut}")
        self.events.publish(
            LIVRAISONS_UPDATED,
            {"reservation_id": delivery.reservation_id, "delivery_id": delivery.id, "statut": delivery.statut},
        )
        return delivery
