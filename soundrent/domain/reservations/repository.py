"""Reservation repository - Database operations for reservations"""

from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ...models import STATUT_BROUILLON, Client, Pack, Reservation


class ReservationRepository:
    """Repository for reservation database operations"""

    @staticmethod
    def get_reservation_by_id(db: Session, reservation_id: int) -> Optional[Reservation]:
        """Get a specific reservation by ID, with its client and pack"""
        return (
            db.query(Reservation)
            .options(joinedload(Reservation.client), joinedload(Reservation.pack))
            .filter(Reservation.id == reservation_id)
            .first()
        )

    @staticmethod
    def get_reservations(
        db: Session,
        statut: Optional[str] = None,
        client_id: Optional[int] = None,
    ) -> list[Reservation]:
        """Get reservations, newest event first"""
        query = db.query(Reservation).filter(Reservation.is_draft.is_(False))

        if statut:
            query = query.filter(Reservation.statut == statut)

        if client_id:
            query = query.filter(Reservation.client_id == client_id)

        return query.order_by(Reservation.date_event.desc(), Reservation.id.desc()).all()

    @staticmethod
    def get_drafts(db: Session, limit: int = 10) -> list[Reservation]:
        """Most recently edited drafts first"""
        return (
            db.query(Reservation)
            .filter(or_(Reservation.is_draft.is_(True), Reservation.statut == STATUT_BROUILLON))
            .order_by(
                Reservation.draft_updated_at.desc(),
                Reservation.created_at.desc(),
                Reservation.id.desc(),
            )
            .limit(limit)
            .all()
        )

    @staticmethod
    def create_reservation(db: Session, **reservation_data) -> Reservation:
        """Create a new reservation"""
        reservation = Reservation(**reservation_data)
        db.add(reservation)
        db.commit()
        db.refresh(reservation)
        return reservation

    @staticmethod
    def update_reservation(db: Session, reservation: Reservation, **updates) -> Reservation:
        """Update a reservation. Unlike partial updates, None clears the column."""
        for key, value in updates.items():
            if hasattr(reservation, key):
                setattr(reservation, key, value)

        db.commit()
        db.refresh(reservation)
        return reservation

    @staticmethod
    def delete_reservation(db: Session, reservation: Reservation) -> None:
        """Delete a reservation and everything derived from it"""
        db.delete(reservation)
        db.commit()

    @staticmethod
    def get_client_by_id(db: Session, client_id: int) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id).first()

    @staticmethod
    def get_pack_by_id(db: Session, pack_id: int) -> Optional[Pack]:
        return db.query(Pack).filter(Pack.id == pack_id).first()
