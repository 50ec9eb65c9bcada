import asyncio
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from soundrent.domain.reservations.drafts import DraftAutosaver, DraftService, has_meaningful_content
from soundrent.domain.reservations.exceptions import ReservationNotFoundError, ReservationValidationError
from soundrent.domain.reservations.schemas import ReservationForm
from soundrent.models import Reservation


def test_empty_form_is_not_saved(db):
    draft = DraftService(db).autosave(ReservationForm())

    assert draft is None
    assert db.query(Reservation).count() == 0


def test_blank_strings_still_count_as_empty():
    form = ReservationForm(adresse_event="  ", notes="", prix_total_ttc="", date_event="")
    assert not has_meaningful_content(form)


@pytest.mark.parametrize(
    "field,value",
    [
        ("notes", "Mariage"),
        ("adresse_event", "3 quai Voltaire"),
        ("date_event", date(2025, 7, 1)),
        ("prix_total_ttc", Decimal("10")),
        ("ville_zone", "Hors Paris"),
    ],
)
def test_any_meaningful_field_triggers_save(field, value):
    assert has_meaningful_content(ReservationForm(**{field: value}))


def test_first_save_inserts_then_updates_same_row(db, client):
    service = DraftService(db)

    first = service.autosave(ReservationForm(client_id=client.id, notes="v1"))
    second = service.autosave(ReservationForm(client_id=client.id, notes="v2"), draft_id=first.id)

    assert second.id == first.id
    assert db.query(Reservation).count() == 1
    assert second.notes == "v2"
    assert second.statut == "Brouillon"
    assert second.is_draft is True
    assert second.ref is None
    assert second.full_name == "Marie Dupont"


def test_draft_stores_derived_amounts(db):
    draft = DraftService(db).autosave(
        ReservationForm(
            prix_total_ttc=Decimal("100"),
            livraison_aller=True,
            acompte_du=Decimal("30"),
            date_event=date(2025, 6, 10),
        )
    )

    assert draft.solde_du == Decimal("110.00")
    assert draft.deadline_paiement == datetime(2025, 6, 7)
    assert draft.livraison is True


def test_finalized_draft_is_not_overwritten(db):
    service = DraftService(db)
    draft = service.autosave(ReservationForm(notes="first"))
    draft.is_draft = False
    draft.statut = "Confirmée"
    db.commit()

    new_draft = service.autosave(ReservationForm(notes="second"), draft_id=draft.id)

    assert new_draft.id != draft.id
    db.refresh(draft)
    assert draft.notes == "first"


def test_latest_draft_is_the_most_recently_edited(db):
    service = DraftService(db)
    older = service.autosave(ReservationForm(notes="older"))
    newer = service.autosave(ReservationForm(notes="newer"))
    older.draft_updated_at = datetime.utcnow() - timedelta(hours=1)
    db.commit()

    assert service.latest().id == newer.id
    assert [d.id for d in service.list_resumable()] == [newer.id, older.id]


def test_final_reservations_are_not_resumable(db):
    db.add(Reservation(ref="RES-2025-001", is_draft=False, statut="Confirmée"))
    db.commit()

    assert DraftService(db).latest() is None


def test_discard_deletes_draft(db):
    service = DraftService(db)
    draft = service.autosave(ReservationForm(notes="to drop"))

    service.discard(draft.id)

    assert db.query(Reservation).count() == 0


def test_discard_refuses_final_reservation(db):
    reservation = Reservation(ref="RES-2025-001", is_draft=False, statut="Confirmée")
    db.add(reservation)
    db.commit()

    with pytest.raises(ReservationValidationError):
        DraftService(db).discard(reservation.id)
    with pytest.raises(ReservationNotFoundError):
        DraftService(db).discard(9999)


def test_autosaver_coalesces_a_burst_of_edits(db, session_factory):
    async def scenario():
        saver = DraftAutosaver(session_factory, delay=0.01)
        for text in ("M", "Ma", "Mariage"):
            saver.schedule(ReservationForm(notes=text))
        await asyncio.sleep(0.1)
        return saver

    saver = asyncio.run(scenario())

    drafts = db.query(Reservation).all()
    assert len(drafts) == 1
    assert drafts[0].notes == "Mariage"
    assert saver.draft_id == drafts[0].id


def test_autosaver_reuses_draft_id_across_saves(db, session_factory):
    async def scenario():
        saver = DraftAutosaver(session_factory, delay=60)
        saver.schedule(ReservationForm(notes="first"))
        first = await saver.flush()
        saver.schedule(ReservationForm(notes="second"))
        second = await saver.flush()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.id == second.id
    assert db.query(Reservation).count() == 1


def test_autosaver_skips_empty_form(db, session_factory):
    async def scenario():
        saver = DraftAutosaver(session_factory, delay=60)
        saver.schedule(ReservationForm())
        return await saver.flush(), saver

    draft, saver = asyncio.run(scenario())

    assert draft is None
    assert saver.draft_id is None
    assert db.query(Reservation).count() == 0
