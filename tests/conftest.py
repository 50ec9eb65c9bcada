import os

# Must be set before soundrent.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from soundrent.database import Base  # noqa: E402
from soundrent.events import EventBus  # noqa: E402
from soundrent.models import Client, Pack  # noqa: E402
from soundrent.domain.reservations.schemas import ReservationForm  # noqa: E402


class RecordingEventBus(EventBus):
    """Event bus that also keeps every published event"""

    def __init__(self):
        super().__init__()
        self.published = []

    def publish(self, name, payload):
        self.published.append((name, payload))
        return super().publish(name, payload)

    def names(self):
        return [name for name, _ in self.published]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def events():
    return RecordingEventBus()


@pytest.fixture
def client(db):
    client = Client(nom="Dupont", prenom="Marie", email="marie@example.com", telephone="0601020304")
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


@pytest.fixture
def pack(db):
    pack = Pack(nom_pack="Pack Soirée", prix_base_ttc=Decimal("300"))
    db.add(pack)
    db.commit()
    db.refresh(pack)
    return pack


@pytest.fixture
def make_form(client, pack):
    """Complete, valid form; keyword arguments override fields"""

    def _make(**overrides):
        data = {
            "client_id": client.id,
            "pack_id": pack.id,
            "date_event": date(2025, 6, 10),
            "heure_event": "14:00",
            "heure_fin_event": "18:00",
            "ville_zone": "Paris",
            "adresse_event": "12 rue de la Paix",
            "prix_total_ttc": Decimal("300"),
            "acompte_du": Decimal("100"),
        }
        data.update(overrides)
        return ReservationForm(**data)

    return _make
