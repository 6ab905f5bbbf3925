"""
Pydantic models for marketplace data.

These are the shapes that cross module boundaries: the store returns them,
the registry and workflow consume them, the API serializes them. ORM rows
never leave ``store.py``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Ledger id meaning "never registered on the ledger"
SENTINEL_LEDGER_ID = 0

MAX_IMAGES = 5


# ─── Enumerations ───────────────────────────────────────────────────


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


class RequestStatus(str, Enum):
    """Purchase request lifecycle. Strictly forward-moving."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


# Legal edges of the purchase-request state machine
ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED}),
    RequestStatus.APPROVED: frozenset({RequestStatus.COMPLETED}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.COMPLETED: frozenset(),
}


class NotificationType(str, Enum):
    PURCHASE_REQUESTED = "purchase_requested"
    PURCHASE_APPROVED = "purchase_approved"
    PAYMENT_SUCCESSFUL = "payment_successful"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"


class VerificationMode(str, Enum):
    """How a freshly registered listing gets its verification flag."""

    WALLET = "wallet"  # Owner's wallet is on file → verified
    LEDGER = "ledger"  # Mirror whatever the ledger reports


# ─── Validation ─────────────────────────────────────────────────────


class FieldViolation(BaseModel):
    """One invalid or missing input field."""

    field: str
    message: str


# ─── Entities ───────────────────────────────────────────────────────


class User(BaseModel):
    id: str
    name: str
    email: str
    wallet_ref: Optional[str] = None
    role: Role
    created_at: datetime


class PurchaseRequest(BaseModel):
    id: str
    land_id: str
    buyer_id: str
    status: RequestStatus
    timestamp: datetime


class Land(BaseModel):
    id: str
    title: str
    description: str
    location: str
    size: Decimal
    price: Decimal
    owner_id: str
    ledger_id: int = SENTINEL_LEDGER_ID
    is_verified: bool = False
    is_for_sale: bool = True
    images: list[str] = Field(default_factory=list)
    document: str
    document_fingerprint: str
    purchase_requests: list[PurchaseRequest] = Field(default_factory=list)
    created_at: datetime

    @property
    def on_ledger(self) -> bool:
        return self.ledger_id != SENTINEL_LEDGER_ID

    def find_request(self, request_id: str) -> PurchaseRequest | None:
        for request in self.purchase_requests:
            if request.id == request_id:
                return request
        return None


class Notification(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    message: str
    land_id: Optional[str] = None
    is_read: bool = False
    timestamp: datetime


# ─── Inputs ─────────────────────────────────────────────────────────


class LandInput(BaseModel):
    """Raw listing fields as submitted. Validated by ``validators.validate_land``.

    Fields are Optional and loosely typed on purpose: the registry must report
    every problem at once, so nothing is rejected at parse time.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    size: Optional[str | Decimal | float | int] = None
    price: Optional[str | Decimal | float | int] = None


class UploadedFile(BaseModel):
    """An uploaded file, already stored elsewhere.

    ``reference`` is the opaque handle returned by the file store; ``content``
    is only needed for the document, to derive its fingerprint.
    """

    reference: str
    content: bytes = b""
    content_type: Optional[str] = None


class ListingFiles(BaseModel):
    images: list[UploadedFile] = Field(default_factory=list)
    documents: list[UploadedFile] = Field(default_factory=list)


class LedgerRegistration(BaseModel):
    """The subset of a listing mirrored on the ledger."""

    location: str
    size: Decimal
    price: Decimal
    document_fingerprint: str


class TransactionReceipt(BaseModel):
    """What the ledger knows about a submitted transaction."""

    tx_hash: str
    block_number: Optional[int] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    value: Optional[int] = None


# ─── Results ────────────────────────────────────────────────────────


class PurchaseCompletion(BaseModel):
    """Outcome of a completed purchase, including the ledger mirror status."""

    land: Land
    request: PurchaseRequest
    previous_owner_id: str
    new_owner_id: str
    payment_verified: bool = False
    transfer_mirrored: bool = False
