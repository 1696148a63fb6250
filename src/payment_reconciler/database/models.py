"""SQLAlchemy models for locally stored payments and identifier mappings."""

import uuid
import json
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PaymentStatus(str, enum.Enum):
    """Canonical local payment statuses."""
    READY = "ready"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    PARTIALLY_CANCELLED = "partially_cancelled"
    CANCELLED = "cancelled"


class TransactionAction(str, enum.Enum):
    """Types of actions tracked in history."""
    RESOLVE = "resolve"
    CANCEL = "cancel"
    CANCEL_FAILED = "cancel_failed"
    SYNC = "sync"
    REVIEW_FLAGGED = "review_flagged"


def _load_json(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if value:
        return json.loads(value)
    return None


def _dump_json(value: Optional[Dict[str, Any]]) -> Optional[str]:
    if value is not None:
        return json.dumps(value, default=str)
    return None


class Payment(Base):
    """A locally stored payment for one order."""
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Identifier as originally stored by checkout (order token, UUID or payment token)
    payment_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Gateway payment id confirmed by resolution
    resolved_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(50), nullable=False, default=PaymentStatus.PENDING.value)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    cancelled_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KRW")
    order_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Set when the gateway side could not be confirmed and an operator must look
    review_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    raw_gateway_response_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    transaction_history: Mapped[List["TransactionHistory"]] = relationship(
        "TransactionHistory",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="TransactionHistory.created_at.desc()"
    )

    __table_args__ = (
        Index("ix_payments_status", "status"),
        Index("ix_payments_created_at", "created_at"),
    )

    @property
    def raw_gateway_response(self) -> Optional[Dict[str, Any]]:
        """Get raw gateway response as dictionary."""
        return _load_json(self.raw_gateway_response_json)

    @raw_gateway_response.setter
    def raw_gateway_response(self, value: Optional[Dict[str, Any]]) -> None:
        self.raw_gateway_response_json = _dump_json(value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment to dictionary representation."""
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_key": self.payment_key,
            "resolved_payment_id": self.resolved_payment_id,
            "status": self.status,
            "amount": self.amount,
            "cancelled_amount": self.cancelled_amount,
            "currency": self.currency,
            "order_name": self.order_name,
            "cancel_reason": self.cancel_reason,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "review_required": self.review_required,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class IdentifierMapping(Base):
    """Confirmed mapping from a raw stored identifier to a gateway payment id."""
    __tablename__ = "identifier_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    raw_identifier: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    payment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resolution_method: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class TransactionHistory(Base):
    """Audit trail of resolution, cancel and sync actions on a payment."""
    __tablename__ = "transaction_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id: Mapped[str] = mapped_column(String(36), ForeignKey("payments.id"), nullable=False, index=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    payment: Mapped["Payment"] = relationship("Payment", back_populates="transaction_history")

    __table_args__ = (
        Index("ix_transaction_history_action", "action"),
        Index("ix_transaction_history_created_at", "created_at"),
    )

    @property
    def action_metadata(self) -> Optional[Dict[str, Any]]:
        """Get action metadata as dictionary."""
        return _load_json(self.action_metadata_json)

    @action_metadata.setter
    def action_metadata(self, value: Optional[Dict[str, Any]]) -> None:
        self.action_metadata_json = _dump_json(value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert history entry to dictionary representation."""
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "amount": self.amount,
            "gateway_payment_id": self.gateway_payment_id,
            "idempotency_key": self.idempotency_key,
            "error_message": self.error_message,
            "action_metadata": self.action_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
