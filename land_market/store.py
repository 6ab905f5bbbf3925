"""
Record Store — the authoritative state of the marketplace.

Every method runs one short transaction and returns pydantic models; ORM rows
never escape this module.

Two primitives carry the purchase workflow's correctness guarantees:

  - ``append_purchase_request``: a single conditional INSERT ... SELECT that
    only lands while the parcel is still for sale. A partial unique index on
    (land_id, buyer_id) WHERE status = 'pending' makes a concurrent duplicate
    lose with an IntegrityError instead of slipping through a read-then-write.
  - ``transition_request``: compare-and-swap on one request row,
    ``UPDATE ... WHERE id = ? AND land_id = ? AND status = <expected>``.
    A zero row count means somebody else moved the request first.

Database errors other than those handled conflicts become StoreFailure.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, String, exists, insert, literal, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from .database import create_db_engine, create_session_factory, init_db
from .exceptions import DuplicateRequest, NotForSale, StoreFailure, ValidationFailed
from .models import (
    ALLOWED_TRANSITIONS,
    FieldViolation,
    Land,
    Notification,
    NotificationType,
    PurchaseRequest,
    RequestStatus,
    Role,
    User,
)
from .orm import LandImageRow, LandRow, NotificationRow, PurchaseRequestRow, UserRow

logger = logging.getLogger(__name__)


class _SettlementLost(Exception):
    """Raised inside a settlement transaction to roll it back."""


class RecordStore:
    """SQL-backed record store.

    Usage:
        store = RecordStore.from_url("sqlite:///land_market.db")
        user = store.create_user("Ada", "ada@example.com", "0xabc", Role.SELLER)
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "RecordStore":
        """Create the engine, ensure the schema exists, and wrap it."""
        engine = create_db_engine(database_url, echo=echo)
        try:
            init_db(engine)
        except SQLAlchemyError as e:
            raise StoreFailure("Could not initialise the record store", {"error": str(e)}) from e
        return cls(create_session_factory(engine))

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """One unit of work: commit on success, roll back on any exception.

        IntegrityError is re-raised untouched so callers can translate the
        conflicts they expect; every other database error is fatal.
        """
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error("Record store failure: %s", e)
            raise StoreFailure("Record store operation failed", {"error": str(e)}) from e
        finally:
            session.close()

    def ping(self) -> bool:
        with self._transaction() as session:
            session.execute(text("SELECT 1"))
        return True

    # ─── Users ──────────────────────────────────────────────────────

    def create_user(
        self, name: str, email: str, wallet_ref: Optional[str], role: Role
    ) -> User:
        try:
            with self._transaction() as session:
                row = UserRow(name=name, email=email, wallet_ref=wallet_ref, role=role.value)
                session.add(row)
                session.flush()
                return _to_user(row)
        except IntegrityError as e:
            raise ValidationFailed(self._uniqueness_conflicts(email, wallet_ref)) from e

    def get_user(self, user_id: str) -> User | None:
        with self._transaction() as session:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row else None

    def find_user_by_email(self, email: str) -> User | None:
        with self._transaction() as session:
            row = session.scalars(select(UserRow).where(UserRow.email == email)).first()
            return _to_user(row) if row else None

    def find_user_by_wallet(self, wallet_ref: str) -> User | None:
        with self._transaction() as session:
            row = session.scalars(
                select(UserRow).where(UserRow.wallet_ref == wallet_ref)
            ).first()
            return _to_user(row) if row else None

    def update_user(self, user_id: str, **fields: object) -> User | None:
        """Overwrite the given profile fields. Returns None if the user is gone."""
        try:
            with self._transaction() as session:
                row = session.get(UserRow, user_id)
                if row is None:
                    return None
                for name, value in fields.items():
                    setattr(row, name, value)
                session.flush()
                return _to_user(row)
        except IntegrityError as e:
            raise ValidationFailed(
                self._uniqueness_conflicts(
                    fields.get("email"), fields.get("wallet_ref"), exclude_user_id=user_id
                )
            ) from e

    def _uniqueness_conflicts(
        self,
        email: object,
        wallet_ref: object,
        exclude_user_id: str | None = None,
    ) -> list[FieldViolation]:
        """Work out which unique column a failed write collided with."""
        violations: list[FieldViolation] = []
        if isinstance(email, str):
            other = self.find_user_by_email(email)
            if other and other.id != exclude_user_id:
                violations.append(FieldViolation(field="email", message="Email already registered"))
        if isinstance(wallet_ref, str):
            other = self.find_user_by_wallet(wallet_ref)
            if other and other.id != exclude_user_id:
                violations.append(
                    FieldViolation(field="wallet_ref", message="Wallet address already registered")
                )
        if not violations:
            violations.append(
                FieldViolation(field="user", message="User record conflicts with an existing one")
            )
        return violations

    # ─── Lands ──────────────────────────────────────────────────────

    def create_land(
        self,
        *,
        title: str,
        description: str,
        location: str,
        size: Decimal,
        price: Decimal,
        owner_id: str,
        ledger_id: int,
        is_verified: bool,
        images: list[str],
        document: str,
        document_fingerprint: str,
    ) -> Land:
        with self._transaction() as session:
            row = LandRow(
                title=title,
                description=description,
                location=location,
                size=size,
                price=price,
                owner_id=owner_id,
                ledger_id=ledger_id,
                is_verified=is_verified,
                is_for_sale=True,
                document=document,
                document_fingerprint=document_fingerprint,
            )
            row.images = [
                LandImageRow(position=i, reference=ref) for i, ref in enumerate(images)
            ]
            session.add(row)
            session.flush()
            land_id = row.id
        # Read back so the caller sees exactly what was stored
        land = self.get_land(land_id)
        assert land is not None
        return land

    def get_land(self, land_id: str) -> Land | None:
        with self._transaction() as session:
            row = session.get(LandRow, land_id, options=_LAND_LOAD_OPTIONS)
            return _to_land(row) if row else None

    def list_lands(
        self,
        *,
        owner_id: str | None = None,
        for_sale: bool | None = None,
        verified: bool | None = None,
    ) -> list[Land]:
        """Lands matching every given filter, newest first."""
        query = select(LandRow).options(*_LAND_LOAD_OPTIONS)
        if owner_id is not None:
            query = query.where(LandRow.owner_id == owner_id)
        if for_sale is not None:
            query = query.where(LandRow.is_for_sale.is_(for_sale))
        if verified is not None:
            query = query.where(LandRow.is_verified.is_(verified))
        query = query.order_by(LandRow.created_at.desc())

        with self._transaction() as session:
            return [_to_land(row) for row in session.scalars(query)]

    def set_verification(self, land_id: str, is_verified: bool) -> bool:
        """Overwrite only the verification flag. Returns False if the land is gone."""
        with self._transaction() as session:
            result = session.execute(
                update(LandRow.__table__)
                .where(LandRow.__table__.c.id == land_id)
                .values(is_verified=is_verified)
            )
            return result.rowcount == 1

    # ─── Purchase requests ──────────────────────────────────────────

    def append_purchase_request(self, land_id: str, buyer_id: str) -> PurchaseRequest:
        """Atomically append a pending request while the land is still for sale.

        Raises:
            NotForSale: the land was taken off sale (or vanished) meanwhile.
            DuplicateRequest: the buyer already holds a pending request.
        """
        request_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        lands = LandRow.__table__
        requests = PurchaseRequestRow.__table__

        still_for_sale = exists().where(lands.c.id == land_id, lands.c.is_for_sale.is_(True))
        source = select(
            literal(request_id, String(36)),
            literal(land_id, String(36)),
            literal(buyer_id, String(36)),
            literal(RequestStatus.PENDING.value, String(10)),
            literal(now, DateTime(timezone=True)),
        ).where(still_for_sale)
        stmt = insert(requests).from_select(
            ["id", "land_id", "buyer_id", "status", "timestamp"], source
        )

        try:
            with self._transaction() as session:
                result = session.execute(stmt)
                if result.rowcount == 0:
                    raise NotForSale(land_id)
        except IntegrityError as e:
            raise DuplicateRequest(land_id, buyer_id) from e

        return PurchaseRequest(
            id=request_id,
            land_id=land_id,
            buyer_id=buyer_id,
            status=RequestStatus.PENDING,
            timestamp=now,
        )

    def transition_request(
        self,
        land_id: str,
        request_id: str,
        expected: RequestStatus,
        new: RequestStatus,
    ) -> bool:
        """Compare-and-swap one request's status. True only for the winner."""
        with self._transaction() as session:
            return _swap_status(session, land_id, request_id, expected, new)

    def complete_transfer(self, land_id: str, request_id: str, buyer_id: str) -> bool:
        """Settle an approved request: completed status + new owner + off sale.

        The owner update only matches a land that is still for sale, so a sold
        land is terminal: a second approved buyer can never take it over. On
        success every other pending request on the land is rejected. All
        writes commit together or not at all. Returns False when the request
        was no longer approved or the land was already sold.
        """
        lands = LandRow.__table__
        requests = PurchaseRequestRow.__table__
        try:
            with self._transaction() as session:
                if not _swap_status(
                    session, land_id, request_id, RequestStatus.APPROVED, RequestStatus.COMPLETED
                ):
                    return False
                sold = session.execute(
                    update(lands)
                    .where(lands.c.id == land_id, lands.c.is_for_sale.is_(True))
                    .values(owner_id=buyer_id, is_for_sale=False)
                )
                if sold.rowcount != 1:
                    # Undo the status swap along with everything else
                    raise _SettlementLost()
                session.execute(
                    update(requests)
                    .where(
                        requests.c.land_id == land_id,
                        requests.c.id != request_id,
                        requests.c.status == RequestStatus.PENDING.value,
                    )
                    .values(status=RequestStatus.REJECTED.value)
                )
                return True
        except _SettlementLost:
            logger.warning(
                "Land %s was already sold; request %s not settled", land_id, request_id
            )
            return False

    # ─── Notifications ──────────────────────────────────────────────

    def append_notification(
        self,
        user_id: str,
        type: NotificationType,
        message: str,
        land_id: str | None,
    ) -> Notification:
        with self._transaction() as session:
            row = NotificationRow(
                user_id=user_id, type=type.value, message=message, land_id=land_id
            )
            session.add(row)
            session.flush()
            return _to_notification(row)

    def list_notifications(self, user_id: str) -> list[Notification]:
        """A user's notifications in insertion order."""
        with self._transaction() as session:
            rows = session.scalars(
                select(NotificationRow)
                .where(NotificationRow.user_id == user_id)
                .order_by(NotificationRow.seq)
            )
            return [_to_notification(row) for row in rows]

    def mark_notification_read(self, user_id: str, notification_id: str) -> bool:
        """Set is_read. Idempotent; False if the user has no such notification."""
        table = NotificationRow.__table__
        with self._transaction() as session:
            result = session.execute(
                update(table)
                .where(table.c.id == notification_id, table.c.user_id == user_id)
                .values(is_read=True)
            )
            return result.rowcount == 1


# ─── Helpers ────────────────────────────────────────────────────────

_LAND_LOAD_OPTIONS = (
    selectinload(LandRow.images),
    selectinload(LandRow.purchase_requests),
)


def _swap_status(
    session: Session,
    land_id: str,
    request_id: str,
    expected: RequestStatus,
    new: RequestStatus,
) -> bool:
    if new not in ALLOWED_TRANSITIONS[expected]:
        raise ValueError(f"Illegal purchase request transition {expected.value} -> {new.value}")
    requests = PurchaseRequestRow.__table__
    result = session.execute(
        update(requests)
        .where(
            requests.c.id == request_id,
            requests.c.land_id == land_id,
            requests.c.status == expected.value,
        )
        .values(status=new.value)
    )
    return result.rowcount == 1


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        wallet_ref=row.wallet_ref,
        role=Role(row.role),
        created_at=_aware(row.created_at),
    )


def _to_request(row: PurchaseRequestRow) -> PurchaseRequest:
    return PurchaseRequest(
        id=row.id,
        land_id=row.land_id,
        buyer_id=row.buyer_id,
        status=RequestStatus(row.status),
        timestamp=_aware(row.timestamp),
    )


def _to_land(row: LandRow) -> Land:
    return Land(
        id=row.id,
        title=row.title,
        description=row.description,
        location=row.location,
        size=row.size,
        price=row.price,
        owner_id=row.owner_id,
        ledger_id=row.ledger_id,
        is_verified=row.is_verified,
        is_for_sale=row.is_for_sale,
        images=[image.reference for image in row.images],
        document=row.document,
        document_fingerprint=row.document_fingerprint,
        purchase_requests=[_to_request(r) for r in row.purchase_requests],
        created_at=_aware(row.created_at),
    )


def _to_notification(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        type=NotificationType(row.type),
        message=row.message,
        land_id=row.land_id,
        is_read=row.is_read,
        timestamp=_aware(row.timestamp),
    )
