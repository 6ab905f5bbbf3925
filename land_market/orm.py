"""SQLAlchemy models for the record store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class DecimalText(TypeDecorator):
    """Exact decimal stored as its canonical string.

    ``Numeric`` goes through float on SQLite and rounds to its scale; amounts
    must come back exactly as they were listed.
    """

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(Decimal(value))

    def process_result_value(self, value, dialect):
        return None if value is None else Decimal(value)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRow(Base):
    """A registered marketplace user."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False, index=True)
    wallet_ref: Mapped[str | None] = mapped_column(String(128), unique=True, index=True)
    role: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class LandRow(Base):
    """A listed land parcel."""

    __tablename__ = "lands"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    price: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    ledger_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_for_sale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    document: Mapped[str] = mapped_column(Text, nullable=False)
    document_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    images: Mapped[list["LandImageRow"]] = relationship(
        "LandImageRow", order_by="LandImageRow.position", cascade="all, delete-orphan"
    )
    purchase_requests: Mapped[list["PurchaseRequestRow"]] = relationship(
        "PurchaseRequestRow", order_by="PurchaseRequestRow.seq"
    )

    def __repr__(self) -> str:
        return f"<Land {self.id}: {self.title}>"


class LandImageRow(Base):
    """One image reference of a land, in upload order."""

    __tablename__ = "land_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    land_id: Mapped[str] = mapped_column(String(36), ForeignKey("lands.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    reference: Mapped[str] = mapped_column(Text, nullable=False)


class PurchaseRequestRow(Base):
    """A buyer's request to purchase a land.

    ``seq`` preserves insertion order; ``id`` is the public identifier.
    """

    __tablename__ = "purchase_requests"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=_new_id)
    land_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lands.id"), nullable=False, index=True
    )
    buyer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="pending")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        # At most one pending request per (land, buyer)
        Index(
            "uq_pending_request_per_buyer",
            "land_id",
            "buyer_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


class NotificationRow(Base):
    """A user-visible event. Append-only apart from ``is_read``."""

    __tablename__ = "notifications"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    land_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("lands.id"))
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
