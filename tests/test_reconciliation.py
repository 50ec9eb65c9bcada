from datetime import date
from decimal import Decimal

from soundrent.domain.reservations.reconciliation import (
    desired_deliveries,
    reconcile_deliveries,
    reconcile_payments,
)
from soundrent.models import Delivery, Payment, Reservation


def make_reservation(db, client, pack, **overrides):
    data = {
        "ref": "RES-2025-001",
        "client_id": client.id,
        "pack_id": pack.id,
        "full_name": client.full_name,
        "telephone": client.telephone,
        "date_event": date(2025, 6, 10),
        "heure_event": "14:00",
        "ville_zone": "Paris",
        "adresse_event": "12 rue de la Paix",
        "statut": "Confirmée",
        "is_draft": False,
        "prix_total_ttc": Decimal("300"),
        "acompte_du": Decimal("50"),
        "solde_du": Decimal("250"),
    }
    data.update(overrides)
    reservation = Reservation(**data)
    db.add(reservation)
    db.commit()
    db.refresh(reservation)
    return reservation


def payments_of(db, reservation, payment_type=None):
    query = db.query(Payment).filter(Payment.reservation_id == reservation.id)
    if payment_type:
        query = query.filter(Payment.type == payment_type)
    return query.all()


def test_deposit_payment_created_once(db, client, pack):
    reservation = make_reservation(db, client, pack, acompte_regle=True)

    first = reconcile_payments(db, reservation, today=date(2025, 5, 1))
    second = reconcile_payments(db, reservation, today=date(2025, 5, 2))

    assert len(first) == 1
    assert second == []
    acomptes = payments_of(db, reservation, "Acompte")
    assert len(acomptes) == 1
    assert acomptes[0].montant_eur == Decimal("50.00")
    assert acomptes[0].date_paiement == date(2025, 5, 1)
    assert "RES-2025-001" in acomptes[0].notes


def test_both_payments_when_fully_paid(db, client, pack):
    reservation = make_reservation(db, client, pack, acompte_regle=True, solde_regle=True)

    created = reconcile_payments(db, reservation)

    assert sorted(p.type for p in created) == ["Acompte", "Solde"]


def test_no_payment_for_unpaid_or_zero_amounts(db, client, pack):
    reservation = make_reservation(db, client, pack, acompte_regle=False, solde_regle=True, solde_du=Decimal("0"))

    assert reconcile_payments(db, reservation) == []
    assert payments_of(db, reservation) == []


def test_manual_payment_of_same_type_counts_as_existing(db, client, pack):
    reservation = make_reservation(db, client, pack, acompte_regle=True)
    db.add(
        Payment(
            reservation_id=reservation.id,
            type="Acompte",
            montant_eur=Decimal("50"),
            moyen="Espèces",
            date_paiement=date(2025, 4, 1),
        )
    )
    db.commit()

    assert reconcile_payments(db, reservation) == []
    assert len(payments_of(db, reservation)) == 1


def test_desired_deliveries_dates_and_notes(db, client, pack):
    reservation = make_reservation(db, client, pack, livraison_aller=True, livraison_retour=True, heure_event="09:30")

    desired = desired_deliveries(reservation, "Pack Soirée")

    aller = desired["Livraison"]
    retour = desired["Récupération"]
    assert aller["date_prevue"] == date(2025, 6, 10)
    assert aller["heure_prevue"] == "09:30"
    assert aller["contact_nom"] == "Marie Dupont"
    assert aller["notes"] == "Pack: Pack Soirée | Réf: RES-2025-001 | Livraison aller vers Paris"
    # No end date: pickup the day after at 10:00
    assert retour["date_prevue"] == date(2025, 6, 11)
    assert retour["heure_prevue"] == "10:00"
    assert retour["code_postal"] == "00000"


def test_pickup_uses_end_date_when_set(db, client, pack):
    reservation = make_reservation(db, client, pack, livraison_retour=True, date_fin_event=date(2025, 6, 12))

    assert desired_deliveries(reservation)["Récupération"]["date_prevue"] == date(2025, 6, 12)


def test_toggling_delivery_flag_leaves_exactly_one_record(db, client, pack):
    reservation = make_reservation(db, client, pack, livraison_aller=True)

    for flag in (True, False, True):
        reservation.livraison_aller = flag
        db.commit()
        reconcile_deliveries(db, reservation, "Pack Soirée")

    deliveries = db.query(Delivery).filter(Delivery.reservation_id == reservation.id).all()
    assert [d.type for d in deliveries] == ["Livraison"]


def test_repeated_reconciliation_never_duplicates(db, client, pack):
    reservation = make_reservation(db, client, pack, livraison_aller=True, livraison_retour=True)

    first = reconcile_deliveries(db, reservation)
    second = reconcile_deliveries(db, reservation)

    assert len(first.created) == 2
    assert second.created == [] and second.deleted == 0
    assert db.query(Delivery).count() == 2


def test_unset_flag_removes_planned_delivery(db, client, pack):
    reservation = make_reservation(db, client, pack, livraison_aller=True, livraison_retour=True)
    reconcile_deliveries(db, reservation)

    reservation.livraison_retour = False
    db.commit()
    changes = reconcile_deliveries(db, reservation)

    assert changes.deleted == 1
    assert [d.type for d in db.query(Delivery).all()] == ["Livraison"]


def test_completed_delivery_is_kept_when_flag_unset(db, client, pack):
    reservation = make_reservation(db, client, pack, livraison_aller=True)
    delivery = reconcile_deliveries(db, reservation).created[0]
    delivery.statut = "Effectuée"
    db.commit()

    reservation.livraison_aller = False
    db.commit()
    changes = reconcile_deliveries(db, reservation)

    assert changes.deleted == 0
    assert [d.id for d in changes.kept] == [delivery.id]
    assert db.query(Delivery).count() == 1
