"""SQLAlchemy models for transaction record persistence."""

import uuid
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates
import enum

from ..status import PaymentStatus


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_internal_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TransactionAction(str, enum.Enum):
    """Types of actions tracked in history."""
    INITIATE = "initiate"
    STATUS_QUERY = "status_query"
    REFUND = "refund"
    PROVIDER_ID_UPGRADE = "provider_id_upgrade"


class TransactionRecord(Base):
    """Ties an internal transaction id to a provider-specific id across its lifecycle."""
    __tablename__ = "transaction_records"

    internal_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_internal_id)
    # Order-level at first for some providers, later upgraded to the payment-level id.
    provider_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider_name: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2, asdecimal=True), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=PaymentStatus.PENDING.value)
    refunded_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2, asdecimal=True), nullable=False, default=Decimal("0.00")
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Last provider payload for diagnostics
    last_provider_payload_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_transaction_records_provider_id", "provider_id"),
        Index("ix_transaction_records_status", "status"),
        Index("ix_transaction_records_created_at", "created_at"),
    )

    @validates("provider_name", "amount", "currency_code")
    def _validate_immutable(self, key: str, value: Any) -> Any:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError(f"{key} cannot change once the record is created")
        return value

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def remaining_refundable(self) -> Decimal:
        return Decimal(self.amount) - Decimal(self.refunded_amount or 0)

    @property
    def last_provider_payload(self) -> Optional[Dict[str, Any]]:
        """Get last provider payload as dictionary."""
        if self.last_provider_payload_json:
            return json.loads(self.last_provider_payload_json)
        return None

    @last_provider_payload.setter
    def last_provider_payload(self, value: Optional[Dict[str, Any]]) -> None:
        """Set last provider payload from dictionary."""
        if value is not None:
            self.last_provider_payload_json = json.dumps(value, default=str)
        else:
            self.last_provider_payload_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary representation."""
        return {
            "internal_id": self.internal_id,
            "provider_id": self.provider_id,
            "provider_name": self.provider_name,
            "amount": str(self.amount),
            "currency_code": self.currency_code,
            "status": self.status,
            "refunded_amount": str(self.refunded_amount),
            "payment_method": self.payment_method,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class TransactionHistory(Base):
    """Append-only log of every mutation applied to a transaction record."""
    __tablename__ = "transaction_history"

    # Integer key keeps insertion order for chronological reads
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    internal_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transaction_records.internal_id"), nullable=False, index=True
    )

    # Action performed
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    # Status before and after the action
    previous_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str] = mapped_column(String(50), nullable=False)

    provider_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Amount involved in this action (refunds)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2, asdecimal=True), nullable=True)

    # Error message if action failed
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_transaction_history_action", "action"),
        Index("ix_transaction_history_created_at", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert history entry to dictionary representation."""
        return {
            "id": self.id,
            "internal_id": self.internal_id,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "provider_id": self.provider_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
