"""
External Calendar Integration Models
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

PROVIDER_GOOGLE = "google"
PROVIDER_OUTLOOK = "outlook"
CALENDAR_PROVIDERS = (PROVIDER_GOOGLE, PROVIDER_OUTLOOK)


class CalendarIntegration(Base):
    __tablename__ = "calendar_integrations"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(20), nullable=False, unique=True)  # google, outlook

    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=False)

    # Provider account info
    account_email = Column(String(255), nullable=True)
    calendar_id = Column(String(500), nullable=True)  # Dedicated reservations calendar

    # Settings
    auto_sync_enabled = Column(Boolean, default=True)
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class CalendarEventLink(Base):
    """Remembers which external event mirrors which reservation"""

    __tablename__ = "calendar_event_links"
    __table_args__ = (UniqueConstraint("reservation_id", "provider", name="uq_event_link"),)

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    external_event_id = Column(String(500), nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    reservation = relationship("Reservation", back_populates="calendar_links")
