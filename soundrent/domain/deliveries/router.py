"""Delivery router - FastAPI endpoints for delivery operations"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user
from ...database import get_db
from .schemas import DeliveryResponse, DeliveryUpdate
from .service import DeliveryService

router = APIRouter(prefix="/livraisons", tags=["Deliveries"])


def get_delivery_service(db: Session = Depends(get_db)) -> DeliveryService:
    """Dependency injection for DeliveryService"""
    return DeliveryService(db)


@router.get("", response_model=list[DeliveryResponse])
async def get_deliveries(
    reservation_id: Optional[int] = Query(None),
    statut: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    service: DeliveryService = Depends(get_delivery_service),
):
    return service.get_deliveries(reservation_id=reservation_id, statut=statut)


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: DeliveryService = Depends(get_delivery_service),
):
    return service.get_delivery(delivery_id)


@router.patch("/{delivery_id}", response_model=DeliveryResponse)
async def update_delivery(
    delivery_id: int,
    data: DeliveryUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: DeliveryService = Depends(get_delivery_service),
):
    """Operator statut update or reschedule"""
    return service.update_delivery(delivery_id, data)
