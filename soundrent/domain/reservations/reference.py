"""Booking reference allocation - RES-<year>-<seq>"""

import logging
import re
import time
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models import Reservation

logger = logging.getLogger(__name__)

REF_PREFIX = "RES"
SEQUENCE_WIDTH = 3


def _ref_pattern(year: int) -> re.Pattern:
    return re.compile(rf"^{REF_PREFIX}-{year}-(\d+)$")


def allocate_reference(year: int, existing_refs: Iterable[Optional[str]]) -> str:
    """Next reference for the year: highest existing sequence + 1, zero-padded to 3 digits"""
    pattern = _ref_pattern(year)
    highest = 0
    for ref in existing_refs:
        if not ref:
            continue
        match = pattern.match(ref)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{REF_PREFIX}-{year}-{str(highest + 1).zfill(SEQUENCE_WIDTH)}"


def fallback_reference(year: int) -> str:
    """Timestamp-suffixed reference used when the sequence cannot be read"""
    return f"{REF_PREFIX}-{year}-{str(int(time.time() * 1000))[-6:]}"


class ReferenceAllocator:
    """
    Store-backed allocator. Reads the year's references and increments the max.
    Not atomic: two concurrent saves can compute the same value, which the
    unique constraint on reservations.ref turns into an IntegrityError that
    the caller retries.
    """

    def __init__(self, db: Session):
        self.db = db

    def existing_refs(self, year: int) -> list[str]:
        rows = (
            self.db.query(Reservation.ref)
            .filter(Reservation.ref.like(f"{REF_PREFIX}-{year}-%"))
            .all()
        )
        return [row[0] for row in rows]

    def next_reference(self, year: Optional[int] = None) -> str:
        year = year or date.today().year
        try:
            return allocate_reference(year, self.existing_refs(year))
        except SQLAlchemyError as e:
            ref = fallback_reference(year)
            logger.error(f"❌ Reference sequence unavailable, using fallback {ref}: {e}")
            return ref
