"""Reservation router - FastAPI endpoints for reservation operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user
from ...database import get_db
from ...services.calendar_service import CalendarSyncService
from .drafts import DraftService
from .schemas import (
    AutosaveResponse,
    PricingPreviewResponse,
    ReservationForm,
    ReservationResponse,
    SaveResponse,
)
from .service import ReservationService, SaveResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["Reservations"])


def get_reservation_service(db: Session = Depends(get_db)) -> ReservationService:
    """Dependency injection for ReservationService"""
    return ReservationService(db, calendar=CalendarSyncService(db))


def get_draft_service(db: Session = Depends(get_db)) -> DraftService:
    """Dependency injection for DraftService"""
    return DraftService(db)


def _save_response(result: SaveResult) -> SaveResponse:
    return SaveResponse(
        reservation=ReservationResponse.model_validate(result.reservation),
        created=result.created,
        payments_created=len(result.payments),
        deliveries_created=len(result.deliveries.created),
        deliveries_deleted=result.deliveries.deleted,
        calendar_providers=result.calendar_providers,
        warnings=[str(w) for w in result.warnings],
    )


# ============================================================================
# PRICING
# ============================================================================


@router.post("/pricing/preview", response_model=PricingPreviewResponse)
async def preview_pricing(
    form: ReservationForm,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Totals for the form as it stands, recomputed on every change"""
    return PricingPreviewResponse(**ReservationService.preview_pricing(form))


# ============================================================================
# DRAFTS
# ============================================================================


@router.put("/drafts", response_model=AutosaveResponse)
async def autosave_draft(
    form: ReservationForm,
    draft_id: Optional[int] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    service: DraftService = Depends(get_draft_service),
):
    """Upsert the in-progress form; empty forms are not stored"""
    draft = service.autosave(form, draft_id=draft_id)
    if not draft:
        return AutosaveResponse(saved=False)
    return AutosaveResponse(saved=True, draft=ReservationResponse.model_validate(draft))


@router.get("/drafts", response_model=list[ReservationResponse])
async def list_drafts(
    limit: int = Query(10, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    service: DraftService = Depends(get_draft_service),
):
    """Resumable drafts, most recently edited first"""
    return service.list_resumable(limit=limit)


@router.delete("/drafts/{draft_id}")
async def discard_draft(
    draft_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: DraftService = Depends(get_draft_service),
):
    service.discard(draft_id)
    return {"success": True, "message": "Draft discarded"}


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[ReservationResponse])
async def list_reservations(
    statut: Optional[str] = Query(None),
    client_id: Optional[int] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    return service.list_reservations(statut=statut, client_id=client_id)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    return service.get_reservation(reservation_id)


@router.post("", response_model=SaveResponse, status_code=201)
async def create_reservation(
    form: ReservationForm,
    draft_id: Optional[int] = Query(None, description="Draft being finalized"),
    current_user: CurrentUser = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    """Finalize a new reservation. Follow-up failures come back as warnings."""
    logger.info(f"📥 Saving reservation for user {current_user.id}")
    return _save_response(await service.save(form, draft_id=draft_id))


@router.put("/{reservation_id}", response_model=SaveResponse)
async def update_reservation(
    reservation_id: int,
    form: ReservationForm,
    current_user: CurrentUser = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    return _save_response(await service.save(form, reservation_id=reservation_id))


@router.delete("/{reservation_id}")
async def delete_reservation(
    reservation_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    await service.delete(reservation_id)
    return {"success": True, "message": "Reservation deleted"}


# ============================================================================
# QUICK ACTIONS
# ============================================================================


@router.post("/{reservation_id}/actions/{action}", response_model=ReservationResponse)
async def run_quick_action(
    reservation_id: int,
    action: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    """mark-deposit-paid, mark-balance-paid, mark-caution-received, mark-caution-returned"""
    return await service.run_action(reservation_id, action)
