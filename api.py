"""
Land Market — FastAPI Server
============================

RESTful API for the property-listing marketplace.

Endpoints:
    POST /users                                            Register a user
    GET  /users/me                                         Current user's profile
    PUT  /users/me                                         Update profile
    POST /lands                                            Register a land (multipart)
    GET  /lands                                            All verified lands
    GET  /lands/available                                  On sale and verified
    GET  /lands/mine                                       Lands owned by the caller
    GET  /lands/{land_id}                                  One land
    POST /lands/{land_id}/purchase                         Request a purchase
    GET  /lands/{land_id}/purchase-requests                Requests (owner only)
    POST /lands/{land_id}/purchase-requests/{rid}/approve  Approve (owner only)
    POST /lands/{land_id}/purchase-requests/{rid}/reject   Reject (owner only)
    POST /lands/{land_id}/purchase-requests/{rid}/complete Settle and transfer
    GET  /notifications                                    Caller's notifications
    POST /notifications/{nid}/read                         Mark one as read
    GET  /health                                           Health check

The acting user arrives in the ``X-User-Id`` header, set by the auth layer
in front of this service.

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from land_market import __version__
from land_market.config import Settings
from land_market.exceptions import (
    DuplicateRequest,
    Forbidden,
    InvalidState,
    LedgerUnavailable,
    MarketplaceError,
    MissingWallet,
    NotFound,
    StoreFailure,
    ValidationFailed,
)
from land_market.marketplace import Marketplace
from land_market.models import (
    Land,
    LandInput,
    ListingFiles,
    Notification,
    PurchaseCompletion,
    PurchaseRequest,
    UploadedFile,
    User,
)

load_dotenv()

logger = logging.getLogger(__name__)

# Per uploaded file
MAX_UPLOAD_BYTES = 5 * 1024 * 1024


# ─── Application Lifespan ───────────────────────────────────────────

_market: Marketplace | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the marketplace (store, ledger variant) once on startup."""
    global _market  # noqa: PLW0603
    settings = Settings.load()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting with settings: %s", settings.to_dict())
    _market = Marketplace.from_settings(settings)
    yield
    _market = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Land Market API",
    description=(
        "Property-listing marketplace. The record store is authoritative; "
        "the blockchain ledger is a best-effort mirror that never blocks a request."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Error Mapping ───────────────────────────────────────────────────

# Most specific first: NotForSale is an InvalidState
_STATUS_BY_ERROR: list[tuple[type[MarketplaceError], int]] = [
    (ValidationFailed, 422),
    (NotFound, 404),
    (Forbidden, 403),
    (InvalidState, 409),
    (DuplicateRequest, 409),
    (MissingWallet, 409),
    (LedgerUnavailable, 503),
    (StoreFailure, 500),
]


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)), 400
    )
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"code": exc.code, "message": exc.message, "details": exc.details},
    )


# ─── Request / Response Schemas ─────────────────────────────────────


class RegisterUserRequest(BaseModel):
    """Every field is optional here so validation can report all gaps at once."""

    name: Optional[str] = None
    email: Optional[str] = None
    wallet_ref: Optional[str] = Field(default=None, description="Ledger wallet address")
    role: Optional[str] = Field(default=None, description="buyer or seller")

    model_config = {"json_schema_extra": {"example": {
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "wallet_ref": "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1",
        "role": "seller",
    }}}


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    wallet_ref: Optional[str] = None


class CompletePurchaseRequest(BaseModel):
    payment_proof: Optional[str] = Field(
        default=None, description="Hash of the on-chain payment transaction"
    )


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str
    version: str
    ledger_configured: bool
    store_ok: bool


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_market() -> Marketplace:
    if _market is None:
        raise HTTPException(status_code=503, detail="Marketplace not initialised")
    return _market


def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return user_id


async def _read_upload(upload: UploadFile) -> UploadedFile:
    """Read an upload and give it an opaque, content-addressed reference.

    Storing the bytes is the file store's job; we only keep the handle.
    """
    content = await upload.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"{upload.filename} is too large (max 5 MB)")
    digest = hashlib.sha256(content).hexdigest()
    return UploadedFile(
        reference=f"sha256:{digest}/{upload.filename or 'upload'}",
        content=content,
        content_type=upload.content_type,
    )


# ─── Users ───────────────────────────────────────────────────────────


@app.post("/users", status_code=201, tags=["Users"], summary="Register a user")
def register_user(body: RegisterUserRequest) -> User:
    return _get_market().accounts.register_user(body.name, body.email, body.wallet_ref, body.role)


@app.get("/users/me", tags=["Users"], summary="Current user's profile")
def get_profile(x_user_id: Optional[str] = Header(default=None)) -> User:
    return _get_market().accounts.get_profile(_require_user(x_user_id))


@app.put("/users/me", tags=["Users"], summary="Update current user's profile")
def update_profile(
    body: UpdateProfileRequest, x_user_id: Optional[str] = Header(default=None)
) -> User:
    return _get_market().accounts.update_profile(
        _require_user(x_user_id), body.name, body.email, body.wallet_ref
    )


# ─── Lands ───────────────────────────────────────────────────────────


@app.post("/lands", status_code=201, tags=["Lands"], summary="Register a land listing")
async def register_land(
    title: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    location: Optional[str] = Form(default=None),
    size: Optional[str] = Form(default=None),
    price: Optional[str] = Form(default=None),
    images: Optional[list[UploadFile]] = File(default=None),
    document: Optional[list[UploadFile]] = File(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> Land:
    """Multipart upload: listing fields plus 1-5 ``images`` and one ``document``.

    Ledger registration is attempted but never blocks the listing.
    """
    owner_id = _require_user(x_user_id)
    files = ListingFiles(
        images=[await _read_upload(f) for f in images or []],
        documents=[await _read_upload(f) for f in document or []],
    )
    land_input = LandInput(
        title=title, description=description, location=location, size=size, price=price
    )
    market = _get_market()
    # The ledger call may block on confirmation; keep it off the event loop
    return await asyncio.to_thread(market.registry.register, land_input, owner_id, files)


@app.get("/lands", tags=["Lands"], summary="All verified lands")
def list_lands() -> list[Land]:
    return _get_market().registry.list_verified()


@app.get("/lands/available", tags=["Lands"], summary="Lands on sale and verified")
def available_lands() -> list[Land]:
    return _get_market().registry.get_available()


@app.get("/lands/mine", tags=["Lands"], summary="Lands owned by the caller")
def my_lands(x_user_id: Optional[str] = Header(default=None)) -> list[Land]:
    return _get_market().registry.get_by_owner(_require_user(x_user_id))


@app.get("/lands/{land_id}", tags=["Lands"], summary="One land")
def get_land(land_id: str) -> Land:
    return _get_market().registry.get_by_id(land_id)


# ─── Purchase Workflow ───────────────────────────────────────────────


@app.post(
    "/lands/{land_id}/purchase",
    status_code=201,
    tags=["Purchases"],
    summary="Request to purchase a land",
)
def request_purchase(
    land_id: str, x_user_id: Optional[str] = Header(default=None)
) -> PurchaseRequest:
    return _get_market().workflow.request_purchase(land_id, _require_user(x_user_id))


@app.get(
    "/lands/{land_id}/purchase-requests",
    tags=["Purchases"],
    summary="Purchase requests for a land (owner only)",
)
def purchase_requests(
    land_id: str, x_user_id: Optional[str] = Header(default=None)
) -> list[PurchaseRequest]:
    return _get_market().workflow.get_purchase_requests(land_id, _require_user(x_user_id))


@app.post(
    "/lands/{land_id}/purchase-requests/{request_id}/approve",
    tags=["Purchases"],
    summary="Approve a pending request",
)
def approve_purchase(
    land_id: str, request_id: str, x_user_id: Optional[str] = Header(default=None)
) -> PurchaseRequest:
    return _get_market().workflow.approve_purchase(land_id, request_id, _require_user(x_user_id))


@app.post(
    "/lands/{land_id}/purchase-requests/{request_id}/reject",
    tags=["Purchases"],
    summary="Reject a pending request",
)
def reject_purchase(
    land_id: str, request_id: str, x_user_id: Optional[str] = Header(default=None)
) -> PurchaseRequest:
    return _get_market().workflow.reject_purchase(land_id, request_id, _require_user(x_user_id))


@app.post(
    "/lands/{land_id}/purchase-requests/{request_id}/complete",
    tags=["Purchases"],
    summary="Complete payment and transfer ownership",
)
def complete_purchase(
    land_id: str,
    request_id: str,
    body: CompletePurchaseRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> PurchaseCompletion:
    """Ownership moves in the record store first; the ledger transfer is a mirror."""
    return _get_market().workflow.complete_purchase(
        land_id, request_id, body.payment_proof, acting_user_id=_require_user(x_user_id)
    )


# ─── Notifications ───────────────────────────────────────────────────


@app.get("/notifications", tags=["Notifications"], summary="Caller's notifications, newest first")
def list_notifications(x_user_id: Optional[str] = Header(default=None)) -> list[Notification]:
    return _get_market().notifications.list_for(_require_user(x_user_id))


@app.post(
    "/notifications/{notification_id}/read",
    tags=["Notifications"],
    summary="Mark a notification as read",
)
def mark_notification_read(
    notification_id: str, x_user_id: Optional[str] = Header(default=None)
) -> MessageResponse:
    _get_market().notifications.mark_read(_require_user(x_user_id), notification_id)
    return MessageResponse(message="Notification marked as read")


# ─── System ──────────────────────────────────────────────────────────


@app.get("/health", tags=["System"], summary="Health check")
def health_check() -> HealthResponse:
    market = _get_market()
    try:
        store_ok = market.store.ping()
    except StoreFailure:
        store_ok = False
    return HealthResponse(
        status="healthy" if store_ok else "degraded",
        version=__version__,
        ledger_configured=market.ledger.configured,
        store_ok=store_ok,
    )
