"""SQLAlchemy models for submissions, payment events and provider credentials."""

import uuid
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    Numeric,
    Text,
    Index,
    JSON,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PaymentStatus(str, enum.Enum):
    """Normalized payment status of a submission."""
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELED = "CANCELED"


class CredentialScope(str, enum.Enum):
    """Ownership scope of a provider credential."""
    GLOBAL = "global"
    TENANT = "tenant"


class Submission(Base):
    """A form submission that may require payment."""
    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payment_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_submissions_payment_status_created_at", "payment_status", "created_at"),
        Index("ix_submissions_tenant_id", "tenant_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert submission to dictionary representation."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "payment_status": self.payment_status,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "payment_amount": str(self.payment_amount) if self.payment_amount is not None else None,
            "metadata": self.metadata_ or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class PaymentEvent(Base):
    """Append-only snapshot of a provider payment received through a notification."""
    __tablename__ = "payment_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    mp_payment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    mp_preference_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    external_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
    payer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_payment_events_mp_payment_id", "mp_payment_id"),
        Index("ix_payment_events_external_reference", "external_reference"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "mp_payment_id": self.mp_payment_id,
            "mp_preference_id": self.mp_preference_id,
            "external_reference": self.external_reference,
            "status": self.status,
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "payer_email": self.payer_email,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ProviderCredential(Base):
    """Mercado Pago credentials, either the global singleton or one tenant's."""
    __tablename__ = "provider_credentials"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    scope: Mapped[str] = mapped_column(String(10), nullable=False, default=CredentialScope.TENANT.value)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, unique=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    public_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    webhook_secret: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_production: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_provider_credentials_scope", "scope"),
    )
