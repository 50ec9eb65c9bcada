import re
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from soundrent.domain.reservations.reference import (
    ReferenceAllocator,
    allocate_reference,
    fallback_reference,
)
from soundrent.models import Reservation


def test_next_after_existing_refs():
    assert allocate_reference(2025, ["RES-2025-001", "RES-2025-002"]) == "RES-2025-003"


def test_first_ref_of_the_year():
    assert allocate_reference(2026, []) == "RES-2026-001"


def test_other_years_and_malformed_refs_are_ignored():
    refs = ["RES-2024-087", "RES-2025-004", None, "", "RES-2025-abc", "DEV-2025-050"]
    assert allocate_reference(2025, refs) == "RES-2025-005"


def test_sequence_grows_past_padding():
    assert allocate_reference(2025, ["RES-2025-999"]) == "RES-2025-1000"


def test_gaps_do_not_get_reused():
    assert allocate_reference(2025, ["RES-2025-001", "RES-2025-010"]) == "RES-2025-011"


def test_fallback_reference_uses_timestamp_suffix():
    assert re.match(r"^RES-2025-\d{6}$", fallback_reference(2025))


def test_allocator_reads_store(db):
    db.add_all(
        [
            Reservation(ref="RES-2025-001", is_draft=False, statut="Confirmée"),
            Reservation(ref="RES-2025-007", is_draft=False, statut="Confirmée"),
            Reservation(ref="RES-2024-050", is_draft=False, statut="Confirmée"),
            Reservation(ref=None, is_draft=True, statut="Brouillon"),
        ]
    )
    db.commit()

    assert ReferenceAllocator(db).next_reference(2025) == "RES-2025-008"
    assert ReferenceAllocator(db).next_reference(2024) == "RES-2024-051"


def test_allocator_falls_back_when_store_fails():
    db = MagicMock()
    db.query.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))

    ref = ReferenceAllocator(db).next_reference(2025)

    assert re.match(r"^RES-2025-\d{6}$", ref)
