"""
Draft persistence
Auto-saved snapshots of a reservation form that has not been submitted yet.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import DRAFT_AUTOSAVE_DELAY
from ...models import STATUT_BROUILLON, ZONE_PARIS, Client, Reservation
from .exceptions import (
    ReservationNotFoundError,
    ReservationPersistenceError,
    ReservationValidationError,
)
from .pricing import ZERO, PricingInput, compute_payment_deadline, compute_pricing, to_decimal
from .repository import ReservationRepository
from .schemas import ReservationForm

logger = logging.getLogger(__name__)

# Form fields stored as-is on the reservation row
FORM_COLUMNS = (
    "client_id",
    "pack_id",
    "date_event",
    "date_fin_event",
    "heure_event",
    "heure_fin_event",
    "ville_zone",
    "adresse_event",
    "prix_total_ttc",
    "acompte_du",
    "acompte_regle",
    "solde_regle",
    "caution_eur",
    "caution_statut",
    "caution_retenue_eur",
    "technicien_necessaire",
    "livraison_aller",
    "livraison_retour",
    "notes",
)


def has_meaningful_content(form: ReservationForm) -> bool:
    """An untouched form (no client, pack, date, address, notes, price or zone change) is not worth saving"""
    return any(
        (
            form.client_id,
            form.pack_id,
            form.date_event,
            form.adresse_event,
            form.notes,
            to_decimal(form.prix_total_ttc) > ZERO,
            form.ville_zone != ZONE_PARIS,
        )
    )


def snapshot_columns(form: ReservationForm, client: Optional[Client] = None) -> dict[str, Any]:
    """Reservation columns for a form: submitted values plus everything derived from them"""
    pricing = compute_pricing(PricingInput.from_reservation(form))

    columns = {name: getattr(form, name) for name in FORM_COLUMNS}
    columns.update(
        remise_pourcentage=pricing.remise_pourcentage,
        caution_retenue_eur=min(
            max(ZERO, to_decimal(form.caution_retenue_eur)), max(ZERO, to_decimal(form.caution_eur))
        ),
        solde_du=pricing.solde_du,
        deadline_paiement=compute_payment_deadline(form.date_event),
        livraison=form.livraison_aller or form.livraison_retour,
    )
    if client:
        columns.update(full_name=client.full_name, email=client.email, telephone=client.telephone)
    return columns


class DraftService:
    """Service layer for reservation drafts"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ReservationRepository()

    def autosave(self, form: ReservationForm, draft_id: Optional[int] = None) -> Optional[Reservation]:
        """
        Upsert the draft for this form. The first call inserts; passing back the
        returned id updates that same row. Returns None when the form is empty.
        """
        if not has_meaningful_content(form):
            logger.debug("ℹ️ Draft autosave skipped: form is empty")
            return None

        client = self.repo.get_client_by_id(self.db, form.client_id) if form.client_id else None
        columns = snapshot_columns(form, client)
        columns.update(statut=STATUT_BROUILLON, is_draft=True, draft_updated_at=datetime.utcnow())

        try:
            draft = self.repo.get_reservation_by_id(self.db, draft_id) if draft_id else None
            if draft and draft.is_draft:
                draft = self.repo.update_reservation(self.db, draft, **columns)
                logger.debug(f"✅ Draft {draft.id} updated")
                return draft

            if draft_id:
                logger.warning(f"⚠️ Draft {draft_id} no longer exists or was finalized, starting a new one")

            draft = self.repo.create_reservation(self.db, **columns)
            logger.info(f"✅ Draft {draft.id} created")
            return draft
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Draft autosave failed: {e}")
            raise ReservationPersistenceError("Draft could not be saved") from e

    def list_resumable(self, limit: int = 10) -> list[Reservation]:
        return self.repo.get_drafts(self.db, limit=limit)

    def latest(self) -> Optional[Reservation]:
        """The draft to offer when the user opens a new reservation"""
        drafts = self.repo.get_drafts(self.db, limit=1)
        return drafts[0] if drafts else None

    def discard(self, draft_id: int) -> None:
        draft = self.repo.get_reservation_by_id(self.db, draft_id)
        if not draft:
            raise ReservationNotFoundError(draft_id)
        if not draft.is_draft:
            raise ReservationValidationError([f"La réservation {draft.ref or draft_id} n'est pas un brouillon"])

        self.repo.delete_reservation(self.db, draft)
        logger.info(f"🗑️ Draft {draft_id} discarded")


class DraftAutosaver:
    """
    Debounced autosave for one editing session.

    Each schedule() replaces the pending save; the save only runs once the
    form has been idle for `delay` seconds. At most one save runs at a time,
    and the draft id from the first save is reused for the following ones.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        delay: float = DRAFT_AUTOSAVE_DELAY,
        draft_id: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.delay = delay
        self.draft_id = draft_id
        self._pending: Optional[ReservationForm] = None
        self._timer: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    def schedule(self, form: ReservationForm) -> None:
        """Must be called from inside a running event loop"""
        self._pending = form
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._delayed_save())

    async def _delayed_save(self) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return
        await self.flush()

    async def flush(self) -> Optional[Reservation]:
        """Save the pending form now, if any"""
        if self._timer and not self._timer.done() and self._timer is not asyncio.current_task():
            self._timer.cancel()

        async with self._lock:
            form, self._pending = self._pending, None
            if form is None:
                return None

            db = self.session_factory()
            try:
                draft = DraftService(db).autosave(form, draft_id=self.draft_id)
                if draft:
                    self.draft_id = draft.id
                return draft
            except ReservationPersistenceError as e:
                # Next edit will try again
                logger.warning(f"⚠️ Autosave deferred: {e}")
                return None
            finally:
                db.close()
