"""
Listing Registry — creates and reads Land records.

Flow for ``register``:
  1. Validate every field (all violations reported at once)
  2. Look up the owner (must exist and hold a wallet)
  3. Best-effort ledger registration → ledger id or the sentinel 0
  4. Persist the Land; the record store is authoritative

Every read runs a reconciliation pass: for each land that lives on the
ledger, the ledger's verification flag overwrites the stored one when they
disagree. The ledger wins on verification ONLY, never on any other field.
A ledger failure for one land keeps that land's stored value and the pass
moves on to the next.
"""

from __future__ import annotations

import logging

from .exceptions import MissingWallet, NotFound, ValidationFailed
from .ledger import LedgerGateway, Mirrored, document_fingerprint, try_mirror
from .models import (
    SENTINEL_LEDGER_ID,
    Land,
    LandInput,
    LedgerRegistration,
    ListingFiles,
    VerificationMode,
)
from .store import RecordStore
from .validators import parse_amount, validate_land

logger = logging.getLogger(__name__)


class ListingRegistry:
    """Registers listings and keeps their verification flag in step with the ledger.

    Usage:
        registry = ListingRegistry(store, ledger)
        land = registry.register(LandInput(...), owner_id, ListingFiles(...))
        for land in registry.get_available():
            ...
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerGateway,
        verification_mode: VerificationMode = VerificationMode.WALLET,
    ):
        self.store = store
        self.ledger = ledger
        self.verification_mode = verification_mode

    # ─── Registration ────────────────────────────────────────────────

    def register(self, land_input: LandInput, owner_id: str, files: ListingFiles) -> Land:
        """Create a listing. Never blocked by the ledger.

        Raises:
            ValidationFailed: one or more fields are missing or invalid.
            NotFound: the owner does not exist.
            MissingWallet: the owner has no wallet reference.
        """
        # ── Step 1: store-independent checks first ──────────────────
        violations = validate_land(land_input, files)
        if violations:
            raise ValidationFailed(violations)

        # ── Step 2: owner ───────────────────────────────────────────
        owner = self.store.get_user(owner_id)
        if owner is None:
            raise NotFound("User", owner_id)
        if not owner.wallet_ref:
            raise MissingWallet(owner_id)

        size = parse_amount(land_input.size)
        price = parse_amount(land_input.price)
        assert size is not None and price is not None  # validate_land checked
        assert land_input.title and land_input.description and land_input.location
        document = files.documents[0]
        fingerprint = document_fingerprint(document.content)

        # ── Step 3: best-effort ledger registration ─────────────────
        logger.info("Registering land '%s' for owner %s", land_input.title, owner_id)
        registration = LedgerRegistration(
            location=land_input.location,
            size=size,
            price=price,
            document_fingerprint=fingerprint,
        )
        result = try_mirror("registration", self.ledger.submit_registration, registration)
        ledger_id = result.value if isinstance(result, Mirrored) else SENTINEL_LEDGER_ID

        # ── Step 4: persist ─────────────────────────────────────────
        land = self.store.create_land(
            title=land_input.title.strip(),
            description=land_input.description.strip(),
            location=land_input.location.strip(),
            size=size,
            price=price,
            owner_id=owner_id,
            ledger_id=ledger_id,
            is_verified=self._initial_verification(ledger_id),
            images=[image.reference for image in files.images],
            document=document.reference,
            document_fingerprint=fingerprint,
        )
        logger.info("Land %s saved (ledger id %s)", land.id, ledger_id)
        return land

    def _initial_verification(self, ledger_id: int) -> bool:
        # The owner's wallet was checked above, which is all wallet mode asks
        if self.verification_mode == VerificationMode.WALLET:
            return True
        if ledger_id == SENTINEL_LEDGER_ID:
            return False
        result = try_mirror("verification read", self.ledger.read_verification, ledger_id)
        return bool(result.value) if isinstance(result, Mirrored) else False

    # ─── Reads (all reconciled) ─────────────────────────────────────

    def get_by_id(self, land_id: str) -> Land:
        land = self.store.get_land(land_id)
        if land is None:
            raise NotFound("Land", land_id)
        return self.reconcile(land)

    def get_by_owner(self, owner_id: str) -> list[Land]:
        return self.reconcile_all(self.store.list_lands(owner_id=owner_id))

    def get_available(self) -> list[Land]:
        """Lands on sale AND verified, judged after reconciliation."""
        # Verification is filtered after the pass: the ledger may flip it either way
        lands = self.reconcile_all(self.store.list_lands(for_sale=True))
        return [land for land in lands if land.is_for_sale and land.is_verified]

    def list_verified(self) -> list[Land]:
        lands = self.reconcile_all(self.store.list_lands(verified=True))
        return [land for land in lands if land.is_verified]

    # ─── Reconciliation ──────────────────────────────────────────────

    def reconcile_all(self, lands: list[Land]) -> list[Land]:
        """Reconcile each land independently. One failure never stops the pass."""
        return [self.reconcile(land) for land in lands]

    def reconcile(self, land: Land) -> Land:
        """Bring the stored verification flag in line with the ledger.

        Idempotent: with an unchanged ledger value a second pass writes nothing.
        """
        if not land.on_ledger:
            return land

        result = try_mirror(
            f"verification read for land {land.id}",
            self.ledger.read_verification,
            land.ledger_id,
        )
        if not isinstance(result, Mirrored):
            return land

        ledger_verified = bool(result.value)
        if ledger_verified == land.is_verified:
            return land

        logger.info(
            "Land %s verification %s -> %s (ledger)",
            land.id, land.is_verified, ledger_verified,
        )
        self.store.set_verification(land.id, ledger_verified)
        return land.model_copy(update={"is_verified": ledger_verified})
