"""Reservation domain errors"""

from dataclasses import dataclass


class ReservationError(Exception):
    """Base class for reservation failures that block a save"""


class ReservationValidationError(ReservationError):
    """The form is incomplete or inconsistent; nothing was written"""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class ReservationPersistenceError(ReservationError):
    """The reservation row itself could not be written; no side effects ran"""


class ReservationNotFoundError(ReservationError):
    def __init__(self, reservation_id: int):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation {reservation_id} not found")


@dataclass
class ReconciliationWarning:
    """A follow-up step failed after the reservation was saved"""

    step: str  # payments, deliveries, calendar
    message: str

    def __str__(self) -> str:
        return f"{self.step}: {self.message}"
