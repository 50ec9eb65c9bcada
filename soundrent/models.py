from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Reservation vocabulary (stored verbatim, shown as-is in the back-office)
ZONE_PARIS = "Paris"
ZONE_HORS_PARIS = "Hors Paris"
ZONE_RETRAIT = "Retrait agence"
ZONES = (ZONE_PARIS, ZONE_HORS_PARIS, ZONE_RETRAIT)

STATUT_BROUILLON = "Brouillon"
STATUT_CONFIRMEE = "Confirmée"
STATUT_ACOMPTE_PAYE = "Acompte payé"
STATUT_SOLDEE = "Soldée"
STATUT_ANNULEE = "Annulée"
RESERVATION_STATUTS = (
    STATUT_BROUILLON,
    STATUT_CONFIRMEE,
    STATUT_ACOMPTE_PAYE,
    STATUT_SOLDEE,
    STATUT_ANNULEE,
)
FINAL_STATUTS = tuple(s for s in RESERVATION_STATUTS if s != STATUT_BROUILLON)

CAUTION_A_PERCEVOIR = "À percevoir"
CAUTION_RECUE = "Reçue"
CAUTION_RESTITUEE = "Restituée"
CAUTION_PARTIELLEMENT_RETENUE = "Partiellement retenue"
CAUTION_STATUTS = (
    CAUTION_A_PERCEVOIR,
    CAUTION_RECUE,
    CAUTION_RESTITUEE,
    CAUTION_PARTIELLEMENT_RETENUE,
)

PAYMENT_ACOMPTE = "Acompte"
PAYMENT_SOLDE = "Solde"
PAYMENT_AUTRE = "Autre"
PAYMENT_TYPES = (PAYMENT_ACOMPTE, PAYMENT_SOLDE, PAYMENT_AUTRE)

DELIVERY_LIVRAISON = "Livraison"
DELIVERY_RECUPERATION = "Récupération"
DELIVERY_TYPES = (DELIVERY_LIVRAISON, DELIVERY_RECUPERATION)

DELIVERY_PREVUE = "Prévue"
DELIVERY_EN_COURS = "En cours"
DELIVERY_EFFECTUEE = "Effectuée"
DELIVERY_REPORTEE = "Reportée"
DELIVERY_ANNULEE = "Annulée"
DELIVERY_STATUTS = (
    DELIVERY_PREVUE,
    DELIVERY_EN_COURS,
    DELIVERY_EFFECTUEE,
    DELIVERY_REPORTEE,
    DELIVERY_ANNULEE,
)

MONEY = Numeric(10, 2)


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    nom = Column(String(255), nullable=False)
    prenom = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    telephone = Column(String(50), nullable=True)
    type_client = Column(String(50), nullable=True)  # Particulier, Entreprise, Association
    created_at = Column(DateTime, server_default=func.now())

    reservations = relationship("Reservation", back_populates="client")

    @property
    def full_name(self) -> str:
        return f"{self.prenom or ''} {self.nom}".strip()


class Pack(Base):
    __tablename__ = "packs"

    id = Column(Integer, primary_key=True, index=True)
    nom_pack = Column(String(255), nullable=False)
    prix_base_ttc = Column(MONEY, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())

    reservations = relationship("Reservation", back_populates="pack")


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    # RES-<year>-<seq>; null while the reservation is still a draft
    ref = Column(String(50), unique=True, nullable=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)
    pack_id = Column(Integer, ForeignKey("packs.id"), nullable=True)

    # Denormalized client contact, copied on save
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    telephone = Column(String(50), nullable=True)

    # Event timing
    date_event = Column(Date, nullable=True)
    date_fin_event = Column(Date, nullable=True)
    heure_event = Column(String(5), nullable=True)  # HH:MM
    heure_fin_event = Column(String(5), nullable=True)

    # Location
    ville_zone = Column(String(50), nullable=False, default=ZONE_PARIS)
    adresse_event = Column(Text, nullable=True)

    # Lifecycle
    statut = Column(String(50), nullable=False, default=STATUT_BROUILLON, index=True)
    is_draft = Column(Boolean, nullable=False, default=True, index=True)
    draft_updated_at = Column(DateTime, nullable=True)

    # Pricing inputs
    prix_total_ttc = Column(MONEY, nullable=False, default=0)  # Base pack price, editable
    remise_pourcentage = Column(MONEY, nullable=False, default=0)
    technicien_necessaire = Column(Boolean, nullable=False, default=False)
    livraison_aller = Column(Boolean, nullable=False, default=False)
    livraison_retour = Column(Boolean, nullable=False, default=False)
    livraison = Column(Boolean, nullable=False, default=False)  # aller OR retour
    caution_eur = Column(MONEY, nullable=False, default=200)
    caution_statut = Column(String(50), nullable=False, default=CAUTION_A_PERCEVOIR)
    caution_retenue_eur = Column(MONEY, nullable=False, default=0)

    # Pricing outputs
    acompte_du = Column(MONEY, nullable=False, default=0)
    acompte_regle = Column(Boolean, nullable=False, default=False)
    solde_du = Column(MONEY, nullable=False, default=0)
    solde_regle = Column(Boolean, nullable=False, default=False)
    deadline_paiement = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="reservations")
    pack = relationship("Pack", back_populates="reservations")
    payments = relationship(
        "Payment", back_populates="reservation", cascade="all, delete-orphan"
    )
    deliveries = relationship(
        "Delivery", back_populates="reservation", cascade="all, delete-orphan"
    )
    calendar_links = relationship(
        "CalendarEventLink", back_populates="reservation", cascade="all, delete-orphan"
    )


class Payment(Base):
    """Money received for a reservation. Never updated once created."""

    __tablename__ = "paiements"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # Acompte, Solde, Autre
    montant_eur = Column(MONEY, nullable=False)
    moyen = Column(String(50), nullable=False, default="CB")  # CB, Espèces, Virement, Chèque...
    date_paiement = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    reservation = relationship("Reservation", back_populates="payments")


class Delivery(Base):
    """Logistics task derived from a reservation's delivery flags"""

    __tablename__ = "livraisons"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # Livraison, Récupération
    statut = Column(String(20), nullable=False, default=DELIVERY_PREVUE)
    date_prevue = Column(Date, nullable=True)
    heure_prevue = Column(String(5), nullable=True)
    adresse = Column(Text, nullable=True)
    ville = Column(String(100), nullable=True)
    code_postal = Column(String(10), nullable=True)
    contact_nom = Column(String(255), nullable=True)
    contact_telephone = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    reservation = relationship("Reservation", back_populates="deliveries")


# Calendar tables reference reservations; import so relationships resolve
from . import models_calendar  # noqa: E402, F401
