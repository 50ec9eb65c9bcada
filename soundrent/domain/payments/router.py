"""Payment router - FastAPI endpoints for payment operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user
from ...database import get_db
from .schemas import PaymentCreate, PaymentResponse
from .service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/paiements", tags=["Payments"])


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db)


@router.get("", response_model=list[PaymentResponse])
async def get_payments(
    reservation_id: Optional[int] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return service.get_payments(reservation_id=reservation_id)


@router.post("", response_model=PaymentResponse, status_code=201)
async def create_payment(
    data: PaymentCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return service.create_payment(data)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return service.get_payment(payment_id)


@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    service.delete_payment(payment_id)
    return {"success": True, "message": "Payment deleted"}


@router.get("/{payment_id}/receipt.pdf")
async def download_receipt(
    payment_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Receipt PDF for one payment"""
    pdf_bytes = service.generate_receipt(payment_id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="recu-{payment_id}.pdf"'},
    )
