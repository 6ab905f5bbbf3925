"""
Error taxonomy for the marketplace.

Every error carries a machine-readable code so the API layer can map it to
a status and a structured body without inspecting message text.

Ledger errors are special: LedgerUnavailable is raised by the gateway but is
always absorbed by ``ledger.try_mirror`` and never becomes the failure of a
primary operation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FieldViolation


class MarketplaceError(Exception):
    """Base exception for all marketplace failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationFailed(MarketplaceError):
    """Client input is invalid. Lists EVERY violated field, not just the first."""

    def __init__(self, violations: list[FieldViolation]):
        self.violations = list(violations)
        fields = ", ".join(v.field for v in self.violations)
        super().__init__(
            "VALIDATION_FAILED",
            f"Invalid or missing fields: {fields}",
            {"violations": [v.model_dump() for v in self.violations]},
        )


class NotFound(MarketplaceError):
    """The referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{entity} not found",
            {"entity": entity, "id": entity_id},
        )


class Forbidden(MarketplaceError):
    """The acting user is not allowed to perform this action."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("FORBIDDEN", message, details)


class InvalidState(MarketplaceError):
    """An illegal state transition was attempted."""

    def __init__(self, message: str, details: dict | None = None, code: str = "INVALID_STATE"):
        super().__init__(code, message, details)


class NotForSale(InvalidState):
    """A purchase was requested for a land that is not on sale."""

    def __init__(self, land_id: str):
        super().__init__(
            "Land is not available for purchase",
            {"land_id": land_id},
            code="NOT_FOR_SALE",
        )


class DuplicateRequest(MarketplaceError):
    """The buyer already has a pending request for this land."""

    def __init__(self, land_id: str, buyer_id: str):
        super().__init__(
            "DUPLICATE_REQUEST",
            "You already have a pending purchase request for this land",
            {"land_id": land_id, "buyer_id": buyer_id},
        )


class MissingWallet(MarketplaceError):
    """The user has no wallet reference on file."""

    def __init__(self, user_id: str):
        super().__init__(
            "MISSING_WALLET",
            "User wallet address not found",
            {"user_id": user_id},
        )


class LedgerUnavailable(MarketplaceError):
    """The ledger could not be reached or rejected the call."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("LEDGER_UNAVAILABLE", message, details)


class StoreFailure(MarketplaceError):
    """The record store failed. Fatal: the operation did not complete."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("STORE_FAILURE", message, details)
