"""Reservation service - Save orchestration and quick actions"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...events import (
    LIVRAISONS_UPDATED,
    RESERVATION_PAYMENT_UPDATED,
    RESERVATION_UPDATED,
    EventBus,
    get_event_bus,
)
from ...models import (
    CAUTION_RECUE,
    CAUTION_RESTITUEE,
    FINAL_STATUTS,
    PAYMENT_ACOMPTE,
    PAYMENT_SOLDE,
    STATUT_ACOMPTE_PAYE,
    STATUT_CONFIRMEE,
    STATUT_SOLDEE,
    Payment,
    Reservation,
)
from ...services.calendar_service import CalendarSyncService
from ..payments.repository import PaymentRepository
from .drafts import snapshot_columns
from .exceptions import (
    ReconciliationWarning,
    ReservationNotFoundError,
    ReservationPersistenceError,
    ReservationValidationError,
)
from .pricing import ZERO, PricingInput, compute_payment_deadline, compute_pricing, to_decimal
from .reconciliation import (
    DEFAULT_PAYMENT_METHOD,
    DeliveryChanges,
    reconcile_deliveries,
    reconcile_payments,
)
from .reference import ReferenceAllocator, fallback_reference
from .repository import ReservationRepository
from .schemas import ReservationForm

logger = logging.getLogger(__name__)

MAX_REF_ATTEMPTS = 3

MONEY_FIELDS = {
    "prix_total_ttc": "Le prix",
    "acompte_du": "L'acompte",
    "caution_eur": "La caution",
    "caution_retenue_eur": "Le montant retenu sur la caution",
}


@dataclass
class SaveResult:
    reservation: Reservation
    created: bool
    payments: list[Payment] = field(default_factory=list)
    deliveries: DeliveryChanges = field(default_factory=DeliveryChanges)
    calendar_providers: list[str] = field(default_factory=list)
    warnings: list[ReconciliationWarning] = field(default_factory=list)

    @property
    def payments_created(self) -> bool:
        return bool(self.payments)

    @property
    def deliveries_changed(self) -> bool:
        return bool(self.deliveries.created or self.deliveries.deleted)


def validate_form(form: ReservationForm) -> list[str]:
    """Blocking problems with a form about to be finalized, in French for the operator"""
    errors = []
    if not form.client_id:
        errors.append("Le client est obligatoire")
    if not form.pack_id:
        errors.append("Le pack est obligatoire")
    if not form.date_event:
        errors.append("La date de l'événement est obligatoire")
    if not form.heure_event:
        errors.append("L'heure de l'événement est obligatoire")

    if form.date_event and form.date_fin_event and form.date_fin_event < form.date_event:
        errors.append("La date de fin doit être postérieure ou égale à la date de l'événement")

    single_day = not form.date_fin_event or form.date_fin_event == form.date_event
    # HH:MM strings compare in chronological order
    if single_day and form.heure_event and form.heure_fin_event and form.heure_fin_event <= form.heure_event:
        errors.append("L'heure de fin doit être postérieure à l'heure de début")

    for name, label in MONEY_FIELDS.items():
        if to_decimal(getattr(form, name)) < ZERO:
            errors.append(f"{label} ne peut pas être négatif")

    return errors


class ReservationService:
    """Service layer for reservation business logic"""

    QUICK_ACTIONS = {
        "mark-deposit-paid": "mark_deposit_paid",
        "mark-balance-paid": "mark_balance_paid",
        "mark-caution-received": "mark_caution_received",
        "mark-caution-returned": "mark_caution_returned",
    }

    def __init__(
        self,
        db: Session,
        calendar: Optional[CalendarSyncService] = None,
        events: Optional[EventBus] = None,
    ):
        self.db = db
        self.repo = ReservationRepository()
        self.payments = PaymentRepository()
        self.allocator = ReferenceAllocator(db)
        self.calendar = calendar
        self.events = events or get_event_bus()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_reservation(self, reservation_id: int) -> Reservation:
        reservation = self.repo.get_reservation_by_id(self.db, reservation_id)
        if not reservation:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    def list_reservations(self, statut: Optional[str] = None, client_id: Optional[int] = None) -> list[Reservation]:
        return self.repo.get_reservations(self.db, statut=statut, client_id=client_id)

    @staticmethod
    def preview_pricing(form: ReservationForm) -> dict[str, Any]:
        """Totals for the form as currently filled in. Pure, nothing is stored."""
        pricing = compute_pricing(PricingInput.from_reservation(form))
        return {
            "total": pricing.total,
            "solde_du": pricing.solde_du,
            "delivery_cost": pricing.delivery_cost,
            "technicien_cost": pricing.technicien_cost,
            "caution_retenue": pricing.caution_retenue,
            "remise_montant": pricing.remise_montant,
            "deadline_paiement": compute_payment_deadline(form.date_event),
        }

    # ------------------------------------------------------------------
    # Save orchestration
    # ------------------------------------------------------------------

    def validate(self, form: ReservationForm) -> None:
        errors = validate_form(form)
        if errors:
            logger.warning(f"⚠️ Reservation rejected: {'; '.join(errors)}")
            raise ReservationValidationError(errors)

    async def save(
        self,
        form: ReservationForm,
        reservation_id: Optional[int] = None,
        draft_id: Optional[int] = None,
    ) -> SaveResult:
        """
        Finalize a reservation.

        Validation and the reservation write are blocking: they raise and
        nothing else happens. Payments, deliveries and the calendar are then
        brought in line one after the other; each failure is logged and
        returned as a warning without undoing the saved reservation.
        """
        self.validate(form)

        client = self.repo.get_client_by_id(self.db, form.client_id)
        pack = self.repo.get_pack_by_id(self.db, form.pack_id)
        missing = []
        if not client:
            missing.append(f"Client {form.client_id} introuvable")
        if not pack:
            missing.append(f"Pack {form.pack_id} introuvable")
        if missing:
            raise ReservationValidationError(missing)

        columns = snapshot_columns(form, client)
        columns.update(
            statut=form.statut if form.statut in FINAL_STATUTS else STATUT_CONFIRMEE,
            is_draft=False,
            draft_updated_at=None,
        )

        target = None
        if reservation_id:
            target = self.get_reservation(reservation_id)
        elif draft_id:
            target = self.repo.get_reservation_by_id(self.db, draft_id)
            if target and not target.is_draft:
                logger.warning(f"⚠️ Draft {draft_id} was already finalized as {target.ref}, creating a new reservation")
                target = None

        reservation = self._persist(target, columns)
        result = SaveResult(reservation=reservation, created=reservation_id is None)
        logger.info(f"✅ Reservation {reservation.ref} {'created' if result.created else 'updated'}")

        self._run_step(result, "payments", lambda: setattr(result, "payments", reconcile_payments(self.db, reservation)))
        self._run_step(
            result,
            "deliveries",
            lambda: setattr(result, "deliveries", reconcile_deliveries(self.db, reservation, pack.nom_pack)),
        )
        await self._push_calendar(result, pack.nom_pack)
        self._publish_saved(result)

        return result

    def _persist(self, target: Optional[Reservation], columns: dict[str, Any]) -> Reservation:
        """Write the reservation row, retrying when a freshly allocated ref collides"""
        if target is not None and target.ref:
            return self._write(target, {**columns, "ref": target.ref})

        year = date.today().year
        for attempt in range(1, MAX_REF_ATTEMPTS + 2):
            if attempt <= MAX_REF_ATTEMPTS:
                ref = self.allocator.next_reference(year)
            else:
                ref = fallback_reference(year)
            try:
                return self._write(target, {**columns, "ref": ref}, reraise_integrity=True)
            except IntegrityError as e:
                self.db.rollback()
                logger.warning(f"⚠️ Reference {ref} already taken (attempt {attempt}): {e.orig}")

        raise ReservationPersistenceError("Aucune référence disponible pour la réservation")

    def _write(self, target: Optional[Reservation], columns: dict[str, Any], reraise_integrity: bool = False) -> Reservation:
        try:
            if target is None:
                return self.repo.create_reservation(self.db, **columns)
            return self.repo.update_reservation(self.db, target, **columns)
        except IntegrityError:
            if reraise_integrity:
                raise
            self.db.rollback()
            logger.error(f"❌ Reservation {columns.get('ref')} could not be saved: constraint violation")
            raise ReservationPersistenceError("La réservation n'a pas pu être enregistrée")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Reservation {columns.get('ref')} could not be saved: {e}")
            raise ReservationPersistenceError("La réservation n'a pas pu être enregistrée") from e

    def _run_step(self, result: SaveResult, step: str, action: Callable[[], None]) -> None:
        try:
            action()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ {step} reconciliation failed for {result.reservation.ref}: {e}")
            result.warnings.append(ReconciliationWarning(step, str(e)))

    async def _push_calendar(self, result: SaveResult, pack_name: Optional[str] = None) -> None:
        if self.calendar is None:
            return
        try:
            push = await self.calendar.push_reservation(result.reservation, pack_name)
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Calendar push failed for {result.reservation.ref}: {e}")
            result.warnings.append(ReconciliationWarning("calendar", str(e)))
            return

        result.calendar_providers = push.pushed
        for provider, message in push.errors.items():
            result.warnings.append(ReconciliationWarning("calendar", f"{provider}: {message}"))

    def _publish_saved(self, result: SaveResult) -> None:
        reservation = result.reservation
        self.events.publish(
            RESERVATION_UPDATED,
            {
                "reservation_id": reservation.id,
                "ref": reservation.ref,
                "action": "create" if result.created else "update",
                "payments_created": result.payments_created,
                "deliveries_changed": result.deliveries_changed,
            },
        )
        if result.payments_created:
            self.events.publish(
                RESERVATION_PAYMENT_UPDATED,
                {"reservation_id": reservation.id, "payment_ids": [p.id for p in result.payments]},
            )
        if result.deliveries_changed:
            self.events.publish(
                LIVRAISONS_UPDATED,
                {
                    "reservation_id": reservation.id,
                    "created": [d.id for d in result.deliveries.created],
                    "deleted": result.deliveries.deleted,
                },
            )

    # ------------------------------------------------------------------
    # Quick actions
    # ------------------------------------------------------------------

    async def run_action(self, reservation_id: int, action: str) -> Reservation:
        method = self.QUICK_ACTIONS.get(action)
        if not method:
            raise ReservationValidationError([f"Action inconnue : {action}"])
        return await getattr(self, method)(reservation_id)

    def _record_payment(self, reservation: Reservation, payment_type: str, amount) -> Optional[Payment]:
        amount = to_decimal(amount)
        if amount <= ZERO or self.payments.find_payment(self.db, reservation.id, payment_type):
            return None
        return self.payments.create_payment(
            self.db,
            reservation_id=reservation.id,
            type=payment_type,
            montant_eur=amount,
            moyen=DEFAULT_PAYMENT_METHOD,
            date_paiement=date.today(),
            notes=f"{payment_type} enregistré via action rapide pour la réservation {reservation.ref}",
        )

    async def _after_quick_action(self, reservation: Reservation, action: str) -> Reservation:
        self.events.publish(
            RESERVATION_PAYMENT_UPDATED,
            {"reservation_id": reservation.id, "ref": reservation.ref, "action": action},
        )
        if self.calendar is None:
            return reservation
        try:
            push = await self.calendar.push_reservation(reservation)
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Calendar push failed for {reservation.ref} after {action}: {e}")
            return reservation
        for provider, message in push.errors.items():
            logger.warning(f"⚠️ Calendar not updated on {provider} for {reservation.ref}: {message}")
        return reservation

    async def mark_deposit_paid(self, reservation_id: int) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        self._record_payment(reservation, PAYMENT_ACOMPTE, reservation.acompte_du)
        reservation = self.repo.update_reservation(
            self.db, reservation, acompte_regle=True, statut=STATUT_ACOMPTE_PAYE
        )
        logger.info(f"✅ Deposit marked paid for {reservation.ref}")
        return await self._after_quick_action(reservation, "mark-deposit-paid")

    async def mark_balance_paid(self, reservation_id: int) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        self._record_payment(reservation, PAYMENT_SOLDE, reservation.solde_du)
        reservation = self.repo.update_reservation(self.db, reservation, solde_regle=True, statut=STATUT_SOLDEE)
        logger.info(f"✅ Balance marked paid for {reservation.ref}")
        return await self._after_quick_action(reservation, "mark-balance-paid")

    async def mark_caution_received(self, reservation_id: int) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        reservation = self.repo.update_reservation(self.db, reservation, caution_statut=CAUTION_RECUE)
        logger.info(f"✅ Caution received for {reservation.ref}")
        return await self._after_quick_action(reservation, "mark-caution-received")

    async def mark_caution_returned(self, reservation_id: int) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        reservation = self.repo.update_reservation(self.db, reservation, caution_statut=CAUTION_RESTITUEE)
        logger.info(f"✅ Caution returned for {reservation.ref}")
        return await self._after_quick_action(reservation, "mark-caution-returned")

    async def delete(self, reservation_id: int) -> None:
        """Explicit deletion. Payments, deliveries and calendar links go with it."""
        reservation = self.get_reservation(reservation_id)
        ref = reservation.ref

        if self.calendar is not None:
            try:
                errors = await self.calendar.remove_reservation(reservation)
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Calendar cleanup failed for {ref}: {e}")
                errors = {}
            for provider, message in errors.items():
                logger.warning(f"⚠️ Calendar event for {ref} left on {provider}: {message}")

        self.repo.delete_reservation(self.db, reservation)
        logger.info(f"🗑️ Reservation {ref} deleted")
        self.events.publish(
            RESERVATION_UPDATED, {"reservation_id": reservation_id, "ref": ref, "action": "delete"}
        )
