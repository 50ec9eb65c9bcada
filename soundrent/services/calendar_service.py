"""
External Calendar Service
Mirrors reservations into the connected Google / Outlook calendars:
OAuth token custody, event creation, updates, deletion and full resync
"""
import base64
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from ..config import (
    BUSINESS_NAME,
    CALENDAR_NAME,
    CALENDAR_TIMEZONE,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REDIRECT_URI,
    MICROSOFT_CLIENT_ID,
    MICROSOFT_CLIENT_SECRET,
    MICROSOFT_REDIRECT_URI,
    MICROSOFT_TENANT,
    SECRET_KEY,
)
from ..models import STATUT_ACOMPTE_PAYE, STATUT_ANNULEE, STATUT_SOLDEE, Reservation
from ..models_calendar import (
    PROVIDER_GOOGLE,
    PROVIDER_OUTLOOK,
    CalendarEventLink,
    CalendarIntegration,
)

logger = logging.getLogger(__name__)

EVENT_MARKER = "SoundRent-ID:"
DEFAULT_START_TIME = "14:00"
DEFAULT_EVENT_DURATION = timedelta(hours=4)
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)
HTTP_TIMEOUT = 20.0


class CalendarSyncError(Exception):
    """A calendar provider call failed or the integration is unusable"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# ============================================================================
# TOKEN ENCRYPTION
# ============================================================================


def _cipher() -> Fernet:
    # Fernet needs 32 url-safe base64 bytes; derive them from the app secret
    key = base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest())
    return Fernet(key)


def encrypt_token(token: str) -> str:
    return _cipher().encrypt(token.encode()).decode()


def decrypt_token(token: str) -> str:
    try:
        return _cipher().decrypt(token.encode()).decode()
    except InvalidToken as e:
        raise CalendarSyncError("Stored calendar token cannot be decrypted") from e


# ============================================================================
# EVENT PAYLOAD
# ============================================================================


@dataclass
class CalendarEvent:
    reservation_id: int
    summary: str
    description: str
    location: str
    start: datetime
    end: datetime
    statut: str


def _parse_time(value: Optional[str], default: str) -> tuple[int, int]:
    hours, minutes = (value or default)[:5].split(":")
    return int(hours), int(minutes)


def event_window(reservation: Reservation) -> tuple[datetime, datetime]:
    """Start at date_event + heure_event; end at the end date/time, or 4 hours later"""
    hour, minute = _parse_time(reservation.heure_event, DEFAULT_START_TIME)
    start = datetime.combine(reservation.date_event, datetime.min.time()).replace(hour=hour, minute=minute)

    if reservation.heure_fin_event:
        end_hour, end_minute = _parse_time(reservation.heure_fin_event, DEFAULT_START_TIME)
        end_day = reservation.date_fin_event or reservation.date_event
        end = datetime.combine(end_day, datetime.min.time()).replace(hour=end_hour, minute=end_minute)
    else:
        end = start + DEFAULT_EVENT_DURATION
    return start, end


def _pack_name(reservation: Reservation) -> str:
    return reservation.pack.nom_pack if reservation.pack else "Pack"


def build_event(reservation: Reservation, pack_name: Optional[str] = None) -> CalendarEvent:
    start, end = event_window(reservation)
    lines = [
        f"Pack: {pack_name or _pack_name(reservation)}",
        f"Statut: {reservation.statut}",
        f"Zone: {reservation.ville_zone}",
    ]
    if reservation.adresse_event:
        lines.append(f"Adresse: {reservation.adresse_event}")
    if reservation.notes:
        lines.append(f"Notes: {reservation.notes}")
    lines.extend(["", f"{EVENT_MARKER} {reservation.id}"])

    return CalendarEvent(
        reservation_id=reservation.id,
        summary=f"{reservation.ref} - {reservation.full_name or 'Client'}",
        description="\n".join(lines),
        location=reservation.adresse_event or reservation.ville_zone or "",
        start=start,
        end=end,
        statut=reservation.statut,
    )


def is_calendar_eligible(reservation: Reservation) -> bool:
    return bool(reservation.date_event) and not reservation.is_draft and reservation.statut != STATUT_ANNULEE


# ============================================================================
# PROVIDERS
# ============================================================================


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    account_email: Optional[str] = None


class CalendarProvider:
    """Common HTTP plumbing for a calendar API scoped to an access token"""

    name = ""
    token_url = ""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=HTTP_TIMEOUT)

    async def _request(self, method: str, url: str, token: Optional[str] = None, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise CalendarSyncError(f"{self.name}: {method} {url} failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"❌ {self.name} {method} {url} -> {response.status_code}: {response.text[:300]}")
            raise CalendarSyncError(f"{self.name} API error {response.status_code}", response.status_code)
        return response

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise CalendarSyncError(f"{self.name}: unreadable response ({response.status_code})") from e
        if not isinstance(data, dict):
            raise CalendarSyncError(f"{self.name}: unexpected response ({response.status_code})")
        return data

    def _created_id(self, response: httpx.Response) -> str:
        created_id = self._json(response).get("id")
        if not created_id:
            raise CalendarSyncError(f"{self.name}: no id in response ({response.status_code})")
        return created_id

    async def _token_request(self, data: dict) -> dict:
        response = await self._request("POST", self.token_url, data=data)
        tokens = self._json(response)
        if not tokens.get("access_token"):
            raise CalendarSyncError(f"{self.name}: no access token in response")
        return tokens

    def is_configured(self) -> bool:
        raise NotImplementedError

    def authorization_url(self, state: str) -> str:
        raise NotImplementedError

    async def exchange_code(self, code: str) -> OAuthTokens:
        raise NotImplementedError

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        raise NotImplementedError

    async def list_calendars(self, token: str) -> list[dict]:
        """Calendars as [{"id": ..., "name": ...}]"""
        raise NotImplementedError

    async def create_calendar(self, token: str, name: str) -> dict:
        raise NotImplementedError

    async def list_events(self, token: str, calendar_id: str) -> list[dict]:
        """Events as [{"id": ..., "description": ...}]"""
        raise NotImplementedError

    async def create_event(self, token: str, calendar_id: str, event: CalendarEvent) -> str:
        raise NotImplementedError

    async def update_event(self, token: str, calendar_id: str, event_id: str, event: CalendarEvent) -> None:
        raise NotImplementedError

    async def delete_event(self, token: str, calendar_id: str, event_id: str) -> None:
        raise NotImplementedError

    async def revoke(self, token: str) -> None:
        """Providers without a revocation endpoint just forget the token"""


class GoogleCalendarProvider(CalendarProvider):
    name = PROVIDER_GOOGLE
    auth_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
    api_url = "https://www.googleapis.com/calendar/v3"
    userinfo_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    revoke_url = "https://oauth2.googleapis.com/revoke"
    scopes = [
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/userinfo.email",
    ]

    # Google colour ids: 10 = green, 5 = yellow, 1 = lavender
    STATUT_COLORS = {STATUT_SOLDEE: "10", STATUT_ACOMPTE_PAYE: "5"}

    def is_configured(self) -> bool:
        return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": GOOGLE_CLIENT_ID,
            "redirect_uri": GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        tokens = await self._token_request(
            {
                "code": code,
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "redirect_uri": GOOGLE_REDIRECT_URI,
                "grant_type": "authorization_code",
            }
        )
        user_info = self._json(await self._request("GET", self.userinfo_url, tokens["access_token"]))
        return OAuthTokens(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_in=tokens.get("expires_in", 3600),
            account_email=user_info.get("email"),
        )

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        tokens = await self._token_request(
            {
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        return OAuthTokens(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token", refresh_token),
            expires_in=tokens.get("expires_in", 3600),
        )

    def _events_url(self, calendar_id: str, event_id: Optional[str] = None) -> str:
        url = f"{self.api_url}/calendars/{quote(calendar_id, safe='')}/events"
        return f"{url}/{quote(event_id, safe='')}" if event_id else url

    def _event_body(self, event: CalendarEvent) -> dict[str, Any]:
        return {
            "summary": event.summary,
            "description": event.description,
            "location": event.location,
            "start": {"dateTime": event.start.isoformat(), "timeZone": CALENDAR_TIMEZONE},
            "end": {"dateTime": event.end.isoformat(), "timeZone": CALENDAR_TIMEZONE},
            "colorId": self.STATUT_COLORS.get(event.statut, "1"),
        }

    async def list_calendars(self, token: str) -> list[dict]:
        data = self._json(await self._request("GET", f"{self.api_url}/users/me/calendarList", token))
        return [{"id": c["id"], "name": c.get("summary")} for c in data.get("items", [])]

    async def create_calendar(self, token: str, name: str) -> dict:
        response = await self._request(
            "POST",
            f"{self.api_url}/calendars",
            token,
            json={
                "summary": name,
                "description": f"Calendrier automatique des réservations {BUSINESS_NAME}",
                "timeZone": CALENDAR_TIMEZONE,
            },
        )
        return {"id": self._created_id(response), "name": name}

    async def list_events(self, token: str, calendar_id: str) -> list[dict]:
        events = []
        params = {"maxResults": 2500}
        while True:
            data = self._json(await self._request("GET", self._events_url(calendar_id), token, params=params))
            events.extend({"id": e["id"], "description": e.get("description") or ""} for e in data.get("items", []))
            if not data.get("nextPageToken"):
                return events
            params["pageToken"] = data["nextPageToken"]

    async def create_event(self, token: str, calendar_id: str, event: CalendarEvent) -> str:
        response = await self._request("POST", self._events_url(calendar_id), token, json=self._event_body(event))
        return self._created_id(response)

    async def update_event(self, token: str, calendar_id: str, event_id: str, event: CalendarEvent) -> None:
        await self._request("PUT", self._events_url(calendar_id, event_id), token, json=self._event_body(event))

    async def delete_event(self, token: str, calendar_id: str, event_id: str) -> None:
        await self._request("DELETE", self._events_url(calendar_id, event_id), token)

    async def revoke(self, token: str) -> None:
        await self._request("POST", self.revoke_url, params={"token": token})


class OutlookCalendarProvider(CalendarProvider):
    name = PROVIDER_OUTLOOK
    graph_url = "https://graph.microsoft.com/v1.0"
    scopes = ["offline_access", "Calendars.ReadWrite", "User.Read"]

    @property
    def login_url(self) -> str:
        return f"https://login.microsoftonline.com/{MICROSOFT_TENANT}/oauth2/v2.0"

    @property
    def token_url(self) -> str:
        return f"{self.login_url}/token"

    def is_configured(self) -> bool:
        return bool(MICROSOFT_CLIENT_ID and MICROSOFT_CLIENT_SECRET)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": MICROSOFT_CLIENT_ID,
            "redirect_uri": MICROSOFT_REDIRECT_URI,
            "response_type": "code",
            "response_mode": "query",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.login_url}/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        tokens = await self._token_request(
            {
                "code": code,
                "client_id": MICROSOFT_CLIENT_ID,
                "client_secret": MICROSOFT_CLIENT_SECRET,
                "redirect_uri": MICROSOFT_REDIRECT_URI,
                "grant_type": "authorization_code",
                "scope": " ".join(self.scopes),
            }
        )
        me = self._json(await self._request("GET", f"{self.graph_url}/me", tokens["access_token"]))
        return OAuthTokens(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_in=tokens.get("expires_in", 3600),
            account_email=me.get("mail") or me.get("userPrincipalName"),
        )

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        tokens = await self._token_request(
            {
                "client_id": MICROSOFT_CLIENT_ID,
                "client_secret": MICROSOFT_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "scope": " ".join(self.scopes),
            }
        )
        return OAuthTokens(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token", refresh_token),
            expires_in=tokens.get("expires_in", 3600),
        )

    def _event_body(self, event: CalendarEvent) -> dict[str, Any]:
        return {
            "subject": event.summary,
            "body": {"contentType": "text", "content": event.description},
            "location": {"displayName": event.location},
            "start": {"dateTime": event.start.isoformat(), "timeZone": CALENDAR_TIMEZONE},
            "end": {"dateTime": event.end.isoformat(), "timeZone": CALENDAR_TIMEZONE},
        }

    async def list_calendars(self, token: str) -> list[dict]:
        data = self._json(await self._request("GET", f"{self.graph_url}/me/calendars", token))
        return [{"id": c["id"], "name": c.get("name")} for c in data.get("value", [])]

    async def create_calendar(self, token: str, name: str) -> dict:
        response = await self._request("POST", f"{self.graph_url}/me/calendars", token, json={"name": name})
        return {"id": self._created_id(response), "name": name}

    async def list_events(self, token: str, calendar_id: str) -> list[dict]:
        events = []
        url = f"{self.graph_url}/me/calendars/{calendar_id}/events"
        params: Optional[dict] = {"$top": 500, "$select": "id,body"}
        while url:
            data = self._json(await self._request("GET", url, token, params=params))
            events.extend(
                {"id": e["id"], "description": (e.get("body") or {}).get("content") or ""}
                for e in data.get("value", [])
            )
            # nextLink already carries the query string
            url, params = data.get("@odata.nextLink"), None
        return events

    async def create_event(self, token: str, calendar_id: str, event: CalendarEvent) -> str:
        response = await self._request(
            "POST", f"{self.graph_url}/me/calendars/{calendar_id}/events", token, json=self._event_body(event)
        )
        return self._created_id(response)

    async def update_event(self, token: str, calendar_id: str, event_id: str, event: CalendarEvent) -> None:
        await self._request("PATCH", f"{self.graph_url}/me/events/{event_id}", token, json=self._event_body(event))

    async def delete_event(self, token: str, calendar_id: str, event_id: str) -> None:
        await self._request("DELETE", f"{self.graph_url}/me/events/{event_id}", token)


def default_providers() -> dict[str, CalendarProvider]:
    return {PROVIDER_GOOGLE: GoogleCalendarProvider(), PROVIDER_OUTLOOK: OutlookCalendarProvider()}


# ============================================================================
# SYNC SERVICE
# ============================================================================


@dataclass
class CalendarPushResult:
    pushed: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


class CalendarSyncService:
    """Keeps the connected calendars in step with reservations"""

    def __init__(self, db: Session, providers: Optional[dict[str, CalendarProvider]] = None):
        self.db = db
        self.providers = providers if providers is not None else default_providers()

    def get_provider(self, name: str) -> CalendarProvider:
        provider = self.providers.get(name)
        if not provider:
            raise CalendarSyncError(f"Unknown calendar provider: {name}")
        return provider

    def get_integration(self, provider_name: str) -> Optional[CalendarIntegration]:
        return (
            self.db.query(CalendarIntegration)
            .filter(CalendarIntegration.provider == provider_name)
            .first()
        )

    def get_integrations(self, auto_sync_only: bool = False) -> list[CalendarIntegration]:
        query = self.db.query(CalendarIntegration).filter(
            CalendarIntegration.provider.in_(list(self.providers))
        )
        if auto_sync_only:
            query = query.filter(CalendarIntegration.auto_sync_enabled.is_(True))
        return query.order_by(CalendarIntegration.provider).all()

    async def get_valid_access_token(self, integration: CalendarIntegration) -> str:
        """Decrypted access token, refreshed first when it expires within 5 minutes"""
        if integration.token_expires_at > datetime.utcnow() + TOKEN_REFRESH_MARGIN:
            return decrypt_token(integration.access_token)

        if not integration.refresh_token:
            raise CalendarSyncError(f"{integration.provider}: token expired and no refresh token stored")

        logger.info(f"🔄 {integration.provider} calendar token expired, refreshing...")
        provider = self.get_provider(integration.provider)
        tokens = await provider.refresh(decrypt_token(integration.refresh_token))

        integration.access_token = encrypt_token(tokens.access_token)
        if tokens.refresh_token:
            integration.refresh_token = encrypt_token(tokens.refresh_token)
        integration.token_expires_at = datetime.utcnow() + timedelta(seconds=tokens.expires_in)
        self.db.commit()

        logger.info(f"✅ {integration.provider} calendar token refreshed successfully")
        return tokens.access_token

    async def ensure_calendar(self, integration: CalendarIntegration, token: str) -> str:
        """The dedicated reservations calendar, found by name or created"""
        if integration.calendar_id:
            return integration.calendar_id

        provider = self.get_provider(integration.provider)
        calendars = await provider.list_calendars(token)
        calendar = next((c for c in calendars if c["name"] == CALENDAR_NAME), None)
        if not calendar:
            calendar = await provider.create_calendar(token, CALENDAR_NAME)
            logger.info(f"✅ Created '{CALENDAR_NAME}' calendar on {integration.provider}")

        integration.calendar_id = calendar["id"]
        self.db.commit()
        return calendar["id"]

    def _get_link(self, reservation_id: int, provider_name: str) -> Optional[CalendarEventLink]:
        return (
            self.db.query(CalendarEventLink)
            .filter(
                CalendarEventLink.reservation_id == reservation_id,
                CalendarEventLink.provider == provider_name,
            )
            .first()
        )

    async def _push_to(self, integration: CalendarIntegration, reservation: Reservation, pack_name: Optional[str]) -> None:
        provider = self.get_provider(integration.provider)
        token = await self.get_valid_access_token(integration)
        calendar_id = await self.ensure_calendar(integration, token)
        link = self._get_link(reservation.id, integration.provider)

        if not is_calendar_eligible(reservation):
            if link:
                await provider.delete_event(token, calendar_id, link.external_event_id)
                self.db.delete(link)
                self.db.commit()
                logger.info(f"🗑️ {integration.provider} event removed for {reservation.ref}")
            return

        event = build_event(reservation, pack_name)
        if link:
            try:
                await provider.update_event(token, calendar_id, link.external_event_id, event)
                logger.info(f"✅ {integration.provider} event updated for {reservation.ref}")
                return
            except CalendarSyncError as e:
                if e.status_code not in (404, 410):
                    raise
            # Deleted on the provider side; recreate it
            logger.warning(f"⚠️ {integration.provider} event for {reservation.ref} is gone, recreating")
            self.db.delete(link)
            self.db.flush()

        event_id = await provider.create_event(token, calendar_id, event)
        self.db.add(
            CalendarEventLink(
                reservation_id=reservation.id,
                provider=integration.provider,
                external_event_id=event_id,
            )
        )
        self.db.commit()
        logger.info(f"✅ {integration.provider} event created for {reservation.ref}: {event_id}")

    async def push_reservation(self, reservation: Reservation, pack_name: Optional[str] = None) -> CalendarPushResult:
        """
        Create or update the reservation's event in every auto-synced calendar.
        One provider failing does not stop the others; failures are reported per provider.
        """
        result = CalendarPushResult()
        integrations = self.get_integrations(auto_sync_only=True)
        if not integrations:
            logger.info("ℹ️ No calendar connected or auto-sync disabled")
            return result

        for integration in integrations:
            try:
                await self._push_to(integration, reservation, pack_name)
                result.pushed.append(integration.provider)
            except CalendarSyncError as e:
                self.db.rollback()
                result.errors[integration.provider] = str(e)
                logger.error(f"❌ Calendar push to {integration.provider} failed for {reservation.ref}: {e}")
            except Exception as e:
                self.db.rollback()
                result.errors[integration.provider] = str(e)
                logger.error(f"❌ Unexpected error pushing {reservation.ref} to {integration.provider}: {e}", exc_info=True)

        return result

    async def remove_reservation(self, reservation: Reservation) -> dict[str, str]:
        """Delete the reservation's linked events; returns per-provider errors"""
        errors = {}
        for link in list(reservation.calendar_links):
            integration = self.get_integration(link.provider)
            if not integration:
                continue
            try:
                provider = self.get_provider(link.provider)
                token = await self.get_valid_access_token(integration)
                calendar_id = await self.ensure_calendar(integration, token)
                await provider.delete_event(token, calendar_id, link.external_event_id)
                logger.info(f"🗑️ {link.provider} event removed for {reservation.ref}")
            except CalendarSyncError as e:
                errors[link.provider] = str(e)
            except Exception as e:
                errors[link.provider] = str(e)
                logger.error(f"❌ Unexpected error removing {link.provider} event for {reservation.ref}: {e}", exc_info=True)
        return errors

    async def sync_all(self, reservations: list[Reservation]) -> dict[str, dict]:
        """
        Full resync: delete every event carrying our marker, then recreate one
        per confirmed reservation. Returns per-provider counts.
        """
        summary = {}
        eligible = [r for r in reservations if is_calendar_eligible(r)]

        for integration in self.get_integrations():
            provider = self.get_provider(integration.provider)
            token = await self.get_valid_access_token(integration)
            calendar_id = await self.ensure_calendar(integration, token)

            deleted = 0
            for event in await provider.list_events(token, calendar_id):
                if EVENT_MARKER in event["description"]:
                    await provider.delete_event(token, calendar_id, event["id"])
                    deleted += 1

            self.db.query(CalendarEventLink).filter(
                CalendarEventLink.provider == integration.provider
            ).delete(synchronize_session=False)

            for reservation in eligible:
                event_id = await provider.create_event(token, calendar_id, build_event(reservation))
                self.db.add(
                    CalendarEventLink(
                        reservation_id=reservation.id,
                        provider=integration.provider,
                        external_event_id=event_id,
                    )
                )

            integration.last_sync_at = datetime.utcnow()
            self.db.commit()
            summary[integration.provider] = {"deleted": deleted, "created": len(eligible)}
            logger.info(f"🔄 {integration.provider} resync: {deleted} removed, {len(eligible)} created")

        return summary

    async def connect(self, provider_name: str, code: str) -> CalendarIntegration:
        """Exchange an OAuth code and store the encrypted tokens"""
        provider = self.get_provider(provider_name)
        tokens = await provider.exchange_code(code)

        integration = self.get_integration(provider_name)
        if not integration:
            integration = CalendarIntegration(provider=provider_name, auto_sync_enabled=True)
            self.db.add(integration)

        integration.access_token = encrypt_token(tokens.access_token)
        if tokens.refresh_token:
            integration.refresh_token = encrypt_token(tokens.refresh_token)
        integration.token_expires_at = datetime.utcnow() + timedelta(seconds=tokens.expires_in)
        integration.account_email = tokens.account_email
        integration.calendar_id = None
        self.db.commit()

        await self.ensure_calendar(integration, tokens.access_token)
        self.db.refresh(integration)
        logger.info(f"✅ {provider_name} calendar connected for {tokens.account_email}")
        return integration

    async def disconnect(self, provider_name: str) -> bool:
        integration = self.get_integration(provider_name)
        if not integration:
            return False

        try:
            await self.get_provider(provider_name).revoke(decrypt_token(integration.access_token))
        except CalendarSyncError as e:
            logger.warning(f"Failed to revoke {provider_name} tokens: {e}")

        self.db.query(CalendarEventLink).filter(
            CalendarEventLink.provider == provider_name
        ).delete(synchronize_session=False)
        self.db.delete(integration)
        self.db.commit()
        logger.info(f"✅ {provider_name} calendar disconnected")
        return True


# ============================================================================
# ICALENDAR EXPORT
# ============================================================================


def _ical_escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _ical_datetime(value: datetime) -> str:
    return value.strftime("%Y%m%dT%H%M%S")


def _ical_fold(line: str, limit: int = 75) -> str:
    """Split a content line into chunks of at most 75 UTF-8 octets, continuations start with a space"""
    chunks = []
    current, size = "", 0
    for char in line:
        width = len(char.encode("utf-8"))
        if size + width > limit:
            chunks.append(current)
            current, size = " ", 1
        current += char
        size += width
    chunks.append(current)
    return "\r\n".join(chunks)


def build_ical(reservations: list[Reservation], now: Optional[datetime] = None) -> str:
    """RFC 5545 feed of confirmed reservations, times in the calendar timezone"""
    now = now or datetime.utcnow()
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:-//{BUSINESS_NAME}//Reservations//FR",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{_ical_escape(CALENDAR_NAME)}",
        f"X-WR-TIMEZONE:{CALENDAR_TIMEZONE}",
    ]

    for reservation in reservations:
        if not is_calendar_eligible(reservation):
            continue
        event = build_event(reservation)
        lines.extend(
            [
                "BEGIN:VEVENT",
                f"UID:{BUSINESS_NAME.lower()}-{reservation.id}@{BUSINESS_NAME.lower()}.app",
                f"DTSTAMP:{now.strftime('%Y%m%dT%H%M%SZ')}",
                f"DTSTART;TZID={CALENDAR_TIMEZONE}:{_ical_datetime(event.start)}",
                f"DTEND;TZID={CALENDAR_TIMEZONE}:{_ical_datetime(event.end)}",
                f"SUMMARY:{_ical_escape(event.summary)}",
                f"DESCRIPTION:{_ical_escape(event.description)}",
                f"LOCATION:{_ical_escape(event.location)}",
                f"STATUS:{'CONFIRMED' if reservation.statut == STATUT_SOLDEE else 'TENTATIVE'}",
                f"CATEGORIES:{BUSINESS_NAME},{_ical_escape(reservation.statut)}",
                "END:VEVENT",
            ]
        )

    lines.append("END:VCALENDAR")
    return "\r\n".join(_ical_fold(line) for line in lines) + "\r\n"
