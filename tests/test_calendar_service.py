import asyncio
import json
from datetime import date, datetime, timedelta
from decimal import Decimal

import httpx
import pytest

from soundrent.models import Reservation
from soundrent.models_calendar import CalendarEventLink, CalendarIntegration
from soundrent.services.calendar_service import (
    EVENT_MARKER,
    CalendarSyncError,
    CalendarSyncService,
    GoogleCalendarProvider,
    OutlookCalendarProvider,
    build_event,
    build_ical,
    decrypt_token,
    encrypt_token,
)


def run(coro):
    return asyncio.run(coro)


class FakeGoogle:
    """Just enough of the Google Calendar API for the sync service"""

    def __init__(self, calendars=None, fail_with=None):
        self.events = {}
        self.calendars = calendars if calendars is not None else []
        self.fail_with = fail_with
        self.requests = []
        self._next_id = 1

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"error": "unavailable"})

        path = request.url.path
        is_json = request.headers.get("content-type", "").startswith("application/json")
        body = json.loads(request.content) if is_json else {}

        if path == "/token":
            return httpx.Response(200, json={"access_token": "fresh-token", "expires_in": 3600})
        if path.endswith("/users/me/calendarList"):
            return httpx.Response(200, json={"items": self.calendars})
        if path == "/calendar/v3/calendars" and request.method == "POST":
            calendar = {"id": "created-cal", "summary": body["summary"]}
            self.calendars.append(calendar)
            return httpx.Response(200, json=calendar)
        if path.endswith("/events") and request.method == "POST":
            event_id = f"evt-{self._next_id}"
            self._next_id += 1
            self.events[event_id] = body
            return httpx.Response(200, json={"id": event_id, **body})
        if path.endswith("/events") and request.method == "GET":
            items = [{"id": k, "description": v.get("description")} for k, v in self.events.items()]
            return httpx.Response(200, json={"items": items})
        if "/events/" in path:
            event_id = path.rsplit("/", 1)[1]
            if request.method == "PUT":
                if event_id not in self.events:
                    return httpx.Response(404, json={"error": "deleted"})
                self.events[event_id] = body
                return httpx.Response(200, json={"id": event_id, **body})
            if request.method == "DELETE":
                self.events.pop(event_id, None)
                return httpx.Response(204)
        return httpx.Response(404, json={"error": "not found"})


def google_service(db, fake):
    provider = GoogleCalendarProvider(transport=httpx.MockTransport(fake))
    return CalendarSyncService(db, providers={"google": provider})


def connect_google(db, expires_in=timedelta(hours=1), calendar_id="cal-1", **overrides):
    integration = CalendarIntegration(
        provider="google",
        access_token=encrypt_token("stored-token"),
        refresh_token=encrypt_token("refresh-token"),
        token_expires_at=datetime.utcnow() + expires_in,
        calendar_id=calendar_id,
        auto_sync_enabled=True,
        **overrides,
    )
    db.add(integration)
    db.commit()
    return integration


@pytest.fixture
def reservation(db, client, pack):
    reservation = Reservation(
        ref="RES-2025-001",
        client_id=client.id,
        pack_id=pack.id,
        full_name="Marie Dupont",
        date_event=date(2025, 6, 10),
        heure_event="14:00",
        heure_fin_event="18:00",
        ville_zone="Paris",
        adresse_event="12 rue de la Paix",
        statut="Confirmée",
        is_draft=False,
        prix_total_ttc=Decimal("300"),
    )
    db.add(reservation)
    db.commit()
    db.refresh(reservation)
    return reservation


def test_tokens_are_encrypted_at_rest():
    stored = encrypt_token("ya29.secret")

    assert "ya29" not in stored
    assert decrypt_token(stored) == "ya29.secret"


def test_tampered_token_raises():
    with pytest.raises(CalendarSyncError):
        decrypt_token("not-a-fernet-token")


def test_event_body(reservation):
    event = build_event(reservation)

    assert event.summary == "RES-2025-001 - Marie Dupont"
    assert event.start == datetime(2025, 6, 10, 14, 0)
    assert event.end == datetime(2025, 6, 10, 18, 0)
    assert event.location == "12 rue de la Paix"
    assert "Pack: Pack Soirée" in event.description
    assert f"{EVENT_MARKER} {reservation.id}" in event.description


def test_event_defaults_to_four_hours(reservation):
    reservation.heure_fin_event = None
    event = build_event(reservation)
    assert event.end == datetime(2025, 6, 10, 18, 0)

    reservation.heure_event = None
    event = build_event(reservation)
    assert event.start == datetime(2025, 6, 10, 14, 0)


def test_multi_day_event_ends_on_end_date(reservation):
    reservation.date_fin_event = date(2025, 6, 12)
    reservation.heure_fin_event = "11:00"

    assert build_event(reservation).end == datetime(2025, 6, 12, 11, 0)


def test_push_without_connected_calendar_is_a_no_op(db, reservation):
    fake = FakeGoogle()

    result = run(google_service(db, fake).push_reservation(reservation))

    assert result.pushed == [] and result.errors == {}
    assert fake.requests == []


def test_push_creates_then_updates_same_event(db, reservation):
    connect_google(db)
    fake = FakeGoogle()
    service = google_service(db, fake)

    run(service.push_reservation(reservation, "Pack Soirée"))
    reservation.statut = "Soldée"
    db.commit()
    result = run(service.push_reservation(reservation, "Pack Soirée"))

    assert result.pushed == ["google"]
    assert len(fake.events) == 1
    event = next(iter(fake.events.values()))
    assert event["colorId"] == "10"
    assert event["start"] == {"dateTime": "2025-06-10T14:00:00", "timeZone": "Europe/Paris"}
    assert db.query(CalendarEventLink).count() == 1


def test_event_deleted_on_provider_is_recreated(db, reservation):
    connect_google(db)
    fake = FakeGoogle()
    service = google_service(db, fake)
    run(service.push_reservation(reservation))
    fake.events.clear()

    result = run(service.push_reservation(reservation))

    assert result.errors == {}
    assert list(fake.events) == ["evt-2"]
    assert db.query(CalendarEventLink).one().external_event_id == "evt-2"


def test_cancelled_reservation_removes_event(db, reservation):
    connect_google(db)
    fake = FakeGoogle()
    service = google_service(db, fake)
    run(service.push_reservation(reservation))

    reservation.statut = "Annulée"
    db.commit()
    run(service.push_reservation(reservation))

    assert fake.events == {}
    assert db.query(CalendarEventLink).count() == 0


def test_auto_sync_disabled_skips_provider(db, reservation):
    connect_google(db)
    db.query(CalendarIntegration).update({"auto_sync_enabled": False})
    db.commit()
    fake = FakeGoogle()

    result = run(google_service(db, fake).push_reservation(reservation))

    assert result.pushed == []
    assert fake.requests == []


def test_provider_error_is_reported_not_raised(db, reservation):
    connect_google(db)

    result = run(google_service(db, FakeGoogle(fail_with=503)).push_reservation(reservation))

    assert result.pushed == []
    assert "503" in result.errors["google"]


def test_garbled_provider_response_does_not_block_other_providers(db, reservation):
    connect_google(db)
    db.add(
        CalendarIntegration(
            provider="outlook",
            access_token=encrypt_token("outlook-token"),
            token_expires_at=datetime.utcnow() + timedelta(hours=1),
            calendar_id="cal-9",
            auto_sync_enabled=True,
        )
    )
    db.commit()

    def maintenance_page(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    def outlook(request):
        return httpx.Response(201, json={"id": "AAMk-1"})

    service = CalendarSyncService(
        db,
        providers={
            "google": GoogleCalendarProvider(transport=httpx.MockTransport(maintenance_page)),
            "outlook": OutlookCalendarProvider(transport=httpx.MockTransport(outlook)),
        },
    )

    result = run(service.push_reservation(reservation))

    assert result.pushed == ["outlook"]
    assert "unreadable response" in result.errors["google"]
    links = db.query(CalendarEventLink).all()
    assert [(link.provider, link.external_event_id) for link in links] == [("outlook", "AAMk-1")]


def test_created_event_without_id_is_an_error(db, reservation):
    connect_google(db)

    def no_id(request):
        return httpx.Response(200, json={"status": "confirmed"})

    provider = GoogleCalendarProvider(transport=httpx.MockTransport(no_id))
    result = run(CalendarSyncService(db, providers={"google": provider}).push_reservation(reservation))

    assert result.pushed == []
    assert "no id" in result.errors["google"]
    assert db.query(CalendarEventLink).count() == 0


def test_expiring_token_is_refreshed(db, reservation):
    integration = connect_google(db, expires_in=timedelta(minutes=2))
    fake = FakeGoogle()

    run(google_service(db, fake).push_reservation(reservation))

    assert ("POST", "/token") in fake.requests
    db.refresh(integration)
    assert decrypt_token(integration.access_token) == "fresh-token"
    assert integration.token_expires_at > datetime.utcnow() + timedelta(minutes=30)


def test_dedicated_calendar_found_by_name(db, reservation):
    connect_google(db, calendar_id=None)
    fake = FakeGoogle(calendars=[{"id": "perso", "summary": "Perso"}, {"id": "sr", "summary": "SoundRent Réservations"}])

    run(google_service(db, fake).push_reservation(reservation))

    assert db.query(CalendarIntegration).one().calendar_id == "sr"


def test_dedicated_calendar_created_when_missing(db, reservation):
    connect_google(db, calendar_id=None)
    fake = FakeGoogle()

    run(google_service(db, fake).push_reservation(reservation))

    assert db.query(CalendarIntegration).one().calendar_id == "created-cal"


def test_sync_all_replaces_only_marked_events(db, reservation):
    connect_google(db)
    fake = FakeGoogle()
    fake.events = {
        "old-1": {"description": f"...\n{EVENT_MARKER} 77"},
        "personal": {"description": "Dentist"},
    }
    draft = Reservation(is_draft=True, statut="Brouillon", date_event=date(2025, 7, 1))
    db.add(draft)
    db.commit()

    summary = run(google_service(db, fake).sync_all([reservation, draft]))

    assert summary["google"] == {"deleted": 1, "created": 1}
    assert "personal" in fake.events and "old-1" not in fake.events
    assert db.query(CalendarEventLink).count() == 1
    assert db.query(CalendarIntegration).one().last_sync_at is not None


def test_remove_reservation_deletes_linked_events(db, reservation):
    connect_google(db)
    fake = FakeGoogle()
    service = google_service(db, fake)
    run(service.push_reservation(reservation))

    errors = run(service.remove_reservation(reservation))

    assert errors == {}
    assert fake.events == {}


def test_outlook_event_body_uses_graph_shape(reservation):
    captured = {}

    def handler(request):
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "AAMk-1"})

    provider = OutlookCalendarProvider(transport=httpx.MockTransport(handler))
    event_id = run(provider.create_event("token", "cal-9", build_event(reservation)))

    assert event_id == "AAMk-1"
    assert captured["path"] == "/v1.0/me/calendars/cal-9/events"
    assert captured["body"]["subject"] == "RES-2025-001 - Marie Dupont"
    assert captured["body"]["body"]["contentType"] == "text"


def test_authorization_urls_carry_state():
    assert "state=abc" in GoogleCalendarProvider().authorization_url("abc")
    assert "access_type=offline" in GoogleCalendarProvider().authorization_url("abc")
    assert "state=abc" in OutlookCalendarProvider().authorization_url("abc")


def test_ical_export(db, reservation):
    cancelled = Reservation(
        ref="RES-2025-002",
        full_name="Paul Martin",
        date_event=date(2025, 6, 20),
        statut="Annulée",
        is_draft=False,
    )
    db.add(cancelled)
    db.commit()

    ical = build_ical([reservation, cancelled], now=datetime(2025, 5, 1, 12, 0))

    assert ical.startswith("BEGIN:VCALENDAR\r\n")
    assert ical.endswith("END:VCALENDAR\r\n")
    assert "PRODID:-//SoundRent//Reservations//FR" in ical
    assert ical.count("BEGIN:VEVENT") == 1
    assert "SUMMARY:RES-2025-001 - Marie Dupont" in ical
    assert "DTSTART;TZID=Europe/Paris:20250610T140000" in ical
    assert "DTSTAMP:20250501T120000Z" in ical
    # Newlines in the description are escaped, commas too
    assert "\\n" in ical
    assert "LOCATION:12 rue de la Paix" in ical


def test_ical_long_lines_are_folded(db, reservation):
    reservation.notes = "Scène extérieure, prévoir rallonges et bâches. " * 6
    db.commit()

    ical = build_ical([reservation], now=datetime(2025, 5, 1, 12, 0))
    lines = ical.split("\r\n")

    assert all(len(line.encode("utf-8")) <= 75 for line in lines)
    assert any(line.startswith(" ") for line in lines)
    # Unfolding restores the escaped description
    unfolded = ical.replace("\r\n ", "")
    assert "Notes: Scène extérieure\\, prévoir rallonges" in unfolded
