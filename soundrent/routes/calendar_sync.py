"""
Calendar Sync Routes
OAuth connection for Google / Outlook, auto-sync settings, full resync and iCal export
"""

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user
from ..database import get_db
from ..domain.reservations.repository import ReservationRepository
from ..models_calendar import CALENDAR_PROVIDERS
from ..services.calendar_service import CalendarSyncError, CalendarSyncService, build_ical

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar-sync", tags=["calendar-sync"])


class CalendarSettingsUpdate(BaseModel):
    auto_sync_enabled: bool


def get_calendar_service(db: Session = Depends(get_db)) -> CalendarSyncService:
    return CalendarSyncService(db)


def _check_provider(provider: str) -> None:
    if provider not in CALENDAR_PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unknown calendar provider: {provider}")


@router.get("/status")
async def get_calendar_status(
    current_user: CurrentUser = Depends(get_current_user),
    service: CalendarSyncService = Depends(get_calendar_service),
):
    """Connection status for every provider"""
    status = {}
    for provider in CALENDAR_PROVIDERS:
        integration = service.get_integration(provider)
        if not integration:
            status[provider] = {"connected": False, "user_email": None, "auto_sync_enabled": None}
            continue
        status[provider] = {
            "connected": True,
            "user_email": integration.account_email,
            "calendar_id": integration.calendar_id,
            "auto_sync_enabled": integration.auto_sync_enabled,
            "last_sync_at": integration.last_sync_at,
        }
    return status


@router.get("/export.ics")
async def export_ical(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """iCalendar file of confirmed reservations, for calendars without an API"""
    reservations = ReservationRepository.get_reservations(db)
    return Response(
        content=build_ical(reservations),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="reservations.ics"'},
    )


@router.post("/sync")
async def sync_all_calendars(
    current_user: CurrentUser = Depends(get_current_user),
    service: CalendarSyncService = Depends(get_calendar_service),
):
    """Rebuild the connected calendars from scratch"""
    reservations = ReservationRepository.get_reservations(service.db)
    try:
        summary = await service.sync_all(reservations)
    except CalendarSyncError as e:
        service.db.rollback()
        logger.error(f"❌ Calendar resync failed: {e}")
        raise HTTPException(status_code=502, detail=f"Calendar sync failed: {e}") from e

    return {"success": True, "providers": summary}


@router.get("/{provider}/connect")
async def initiate_calendar_oauth(
    provider: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: CalendarSyncService = Depends(get_calendar_service),
):
    """Start the OAuth flow; the frontend redirects the browser to the returned URL"""
    _check_provider(provider)
    calendar_provider = service.get_provider(provider)
    if not calendar_provider.is_configured():
        raise HTTPException(status_code=500, detail=f"{provider} calendar not configured")

    auth_url = calendar_provider.authorization_url(state=secrets.token_urlsafe(16))
    logger.info(f"{provider} calendar OAuth initiated for user: {current_user.email}")
    return {"authorization_url": auth_url}


@router.post("/{provider}/callback")
async def handle_calendar_callback(
    provider: str,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    service: CalendarSyncService = Depends(get_calendar_service),
):
    """Exchange the authorization code posted back by the frontend"""
    _check_provider(provider)
    body = await request.json()
    code = body.get("code")
    if not code:
        raise HTTPException(status_code=400, detail="No authorization code provided")

    try:
        integration = await service.connect(provider, code)
    except CalendarSyncError as e:
        service.db.rollback()
        logger.error(f"❌ {provider} calendar callback error: {e}")
        raise HTTPException(status_code=400, detail=f"Failed to connect {provider} calendar: {e}") from e

    return {
        "success": True,
        "message": f"{provider} calendar connected successfully",
        "user_email": integration.account_email,
        "calendar_id": integration.calendar_id,
    }


@router.patch("/{provider}")
async def update_calendar_settings(
    provider: str,
    settings: CalendarSettingsUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: CalendarSyncService = Depends(get_calendar_service),
):
    _check_provider(provider)
    integration = service.get_integration(provider)
    if not integration:
        raise HTTPException(status_code=404, detail=f"{provider} calendar not connected")

    integration.auto_sync_enabled = settings.auto_sync_enabled
    service.db.commit()
    logger.info(f"✅ {provider} auto-sync {'enabled' if settings.auto_sync_enabled else 'disabled'}")
    return {"success": True, "auto_sync_enabled": integration.auto_sync_enabled}


@router.post("/{provider}/disconnect")
async def disconnect_calendar(
    provider: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: CalendarSyncService = Depends(get_calendar_service),
):
    _check_provider(provider)
    if not await service.disconnect(provider):
        raise HTTPException(status_code=404, detail=f"{provider} calendar not connected")
    return {"success": True, "message": f"{provider} calendar disconnected"}
