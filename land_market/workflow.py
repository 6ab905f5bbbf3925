"""
Purchase Workflow Engine — owns the purchase-request state machine.

        request()              approve()              complete()
  [none] -------> pending --------------> approved ------------> completed
                     |
                     | reject()
                     v
                  rejected

Every operation follows the same order:

  1. Check preconditions against the record store (no side effects yet)
  2. Commit the store mutation as a conditional update; the loser of a
     race sees a zero row count and gets InvalidState
  3. Mirror to the ledger through ``try_mirror`` (never rolls back step 2)
  4. Emit notifications

The store is the source of truth for ownership. A ledger mirror is written
only AFTER the store commit, never while a store transaction is open.
"""

from __future__ import annotations

import logging

from .exceptions import (
    DuplicateRequest,
    Forbidden,
    InvalidState,
    MissingWallet,
    NotForSale,
    NotFound,
    StoreFailure,
)
from .ledger import LedgerGateway, Mirrored, try_mirror
from .models import (
    Land,
    NotificationType,
    PurchaseCompletion,
    PurchaseRequest,
    RequestStatus,
    User,
)
from .notifications import NotificationEmitter
from .store import RecordStore

logger = logging.getLogger(__name__)


class PurchaseWorkflow:
    """Coordinates store transitions, ledger mirrors and notifications.

    Stateless apart from its collaborators: any number of calls may run
    concurrently. All "one winner" guarantees live in the store.
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerGateway,
        notifications: NotificationEmitter,
    ):
        self.store = store
        self.ledger = ledger
        self.notifications = notifications

    # ─── request ────────────────────────────────────────────────────

    def request_purchase(self, land_id: str, buyer_id: str) -> PurchaseRequest:
        """Open a pending purchase request for ``buyer_id``.

        Raises:
            NotFound: land or buyer missing.
            Forbidden: the buyer already owns the land.
            NotForSale: the land is not on sale.
            MissingWallet: the buyer has no wallet.
            DuplicateRequest: the buyer already has a pending request here.
        """
        land = self._land(land_id)
        buyer = self._user(buyer_id)

        if land.owner_id == buyer.id:
            raise Forbidden("You cannot request to purchase your own land", {"land_id": land_id})
        if not land.is_for_sale:
            raise NotForSale(land_id)
        if not buyer.wallet_ref:
            raise MissingWallet(buyer_id)
        if any(
            r.buyer_id == buyer_id and r.status == RequestStatus.PENDING
            for r in land.purchase_requests
        ):
            raise DuplicateRequest(land_id, buyer_id)

        # Conditional append; a concurrent duplicate loses on the unique index
        request = self.store.append_purchase_request(land_id, buyer_id)
        logger.info("Purchase request %s opened on land %s by %s", request.id, land_id, buyer_id)

        self._notify(
            land.owner_id,
            NotificationType.PURCHASE_REQUESTED,
            f"New purchase request for {land.title} from {buyer.name}",
            land.id,
        )
        self._notify(
            buyer.id,
            NotificationType.PURCHASE_REQUESTED,
            f"Your purchase request for {land.title} has been sent",
            land.id,
        )
        return request

    # ─── approve ────────────────────────────────────────────────────

    def approve_purchase(
        self, land_id: str, request_id: str, acting_user_id: str
    ) -> PurchaseRequest:
        """pending → approved. Only the land's owner may approve."""
        land, request = self._owned_request(land_id, request_id, acting_user_id)
        self._require_status(request, RequestStatus.PENDING)
        buyer = self._buyer_with_wallet(request)

        self._transition(land, request, RequestStatus.PENDING, RequestStatus.APPROVED)

        if land.on_ledger:
            try_mirror("approval", self.ledger.submit_approval, land.ledger_id, buyer.wallet_ref)

        self._notify(
            buyer.id,
            NotificationType.PURCHASE_APPROVED,
            (
                f"Your purchase request for {land.title} has been approved. "
                f"Please complete the payment of {land.price}."
            ),
            land.id,
        )
        self._notify(
            land.owner_id,
            NotificationType.PURCHASE_APPROVED,
            f"You approved the purchase request for {land.title}. Waiting for payment.",
            land.id,
        )
        return request.model_copy(update={"status": RequestStatus.APPROVED})

    # ─── reject ─────────────────────────────────────────────────────

    def reject_purchase(
        self, land_id: str, request_id: str, acting_user_id: str
    ) -> PurchaseRequest:
        """pending → rejected. No ownership change."""
        land, request = self._owned_request(land_id, request_id, acting_user_id)
        self._require_status(request, RequestStatus.PENDING)

        self._transition(land, request, RequestStatus.PENDING, RequestStatus.REJECTED)

        if land.on_ledger:
            buyer = self.store.get_user(request.buyer_id)
            if buyer is None or not buyer.wallet_ref:
                logger.warning(
                    "Buyer %s has no wallet on file; skipping ledger rejection for request %s",
                    request.buyer_id,
                    request.id,
                )
            else:
                # Releases any on-chain reservation held for this buyer
                try_mirror(
                    "rejection", self.ledger.submit_rejection, land.ledger_id, buyer.wallet_ref
                )

        return request.model_copy(update={"status": RequestStatus.REJECTED})

    # ─── complete ───────────────────────────────────────────────────

    def complete_purchase(
        self,
        land_id: str,
        request_id: str,
        payment_proof: str | None,
        acting_user_id: str | None = None,
    ) -> PurchaseCompletion:
        """approved → completed, transferring ownership to the buyer.

        The store commit (new owner, off sale, completed) is the durable
        record of the transfer and happens before any ledger call. Payment
        verification and the on-chain transfer are mirrors: their failure is
        logged and reported in the result, never raised.
        """
        land = self._land(land_id)
        request = self._request(land, request_id)
        self._require_status(request, RequestStatus.APPROVED)
        if not land.is_for_sale:
            raise NotForSale(land_id)
        if acting_user_id is not None and acting_user_id != request.buyer_id:
            raise Forbidden(
                "Only the buyer can complete this purchase",
                {"request_id": request_id},
            )
        buyer = self._buyer_with_wallet(request)

        # ── (a) previous owner ──────────────────────────────────────
        previous_owner_id = land.owner_id

        # ── (b)(c)(d) owner, off sale, completed: one commit ────────
        if not self.store.complete_transfer(land.id, request.id, buyer.id):
            raise InvalidState(
                "Purchase request is not approved or the land is already sold",
                {"request_id": request.id, "expected": RequestStatus.APPROVED.value},
            )
        logger.info(
            "Land %s ownership transferred %s -> %s", land.id, previous_owner_id, buyer.id
        )

        # ── (e) ledger mirrors ──────────────────────────────────────
        payment_verified = self._verify_payment(payment_proof)
        transfer_mirrored = False
        if land.on_ledger:
            transfer = try_mirror(
                "ownership transfer", self.ledger.submit_transfer, land.ledger_id, buyer.wallet_ref
            )
            transfer_mirrored = transfer.ok

        # ── (f) notifications ───────────────────────────────────────
        self._notify(
            buyer.id,
            NotificationType.OWNERSHIP_TRANSFERRED,
            f"Payment successful! You are now the owner of {land.title}.",
            land.id,
        )
        self._notify(
            previous_owner_id,
            NotificationType.PAYMENT_SUCCESSFUL,
            f"Payment received for {land.title} from {buyer.name}.",
            land.id,
        )
        self._notify(
            previous_owner_id,
            NotificationType.OWNERSHIP_TRANSFERRED,
            f"Ownership of {land.title} has been transferred to {buyer.name}.",
            land.id,
        )

        updated = self._land(land.id)
        completed = updated.find_request(request.id) or request.model_copy(
            update={"status": RequestStatus.COMPLETED}
        )
        return PurchaseCompletion(
            land=updated,
            request=completed,
            previous_owner_id=previous_owner_id,
            new_owner_id=buyer.id,
            payment_verified=payment_verified,
            transfer_mirrored=transfer_mirrored,
        )

    def _verify_payment(self, payment_proof: str | None) -> bool:
        if not payment_proof:
            logger.warning("No payment proof supplied; skipping ledger verification")
            return False
        result = try_mirror("payment verification", self.ledger.read_transaction, payment_proof)
        if not isinstance(result, Mirrored):
            return False
        if result.value is None:
            logger.warning("Payment proof %s not found on the ledger", payment_proof)
            return False
        return True

    # ─── queries ────────────────────────────────────────────────────

    def get_purchase_requests(self, land_id: str, acting_user_id: str) -> list[PurchaseRequest]:
        """All requests on a land, oldest first. Owner only."""
        land = self._land(land_id)
        if land.owner_id != acting_user_id:
            raise Forbidden("Not authorized to view purchase requests", {"land_id": land_id})
        return land.purchase_requests

    # ─── helpers ────────────────────────────────────────────────────

    def _land(self, land_id: str) -> Land:
        land = self.store.get_land(land_id)
        if land is None:
            raise NotFound("Land", land_id)
        return land

    def _user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFound("User", user_id)
        return user

    @staticmethod
    def _request(land: Land, request_id: str) -> PurchaseRequest:
        request = land.find_request(request_id)
        if request is None:
            raise NotFound("PurchaseRequest", request_id)
        return request

    def _owned_request(
        self, land_id: str, request_id: str, acting_user_id: str
    ) -> tuple[Land, PurchaseRequest]:
        land = self._land(land_id)
        if land.owner_id != acting_user_id:
            raise Forbidden("Not authorized to manage purchase requests", {"land_id": land_id})
        return land, self._request(land, request_id)

    @staticmethod
    def _require_status(request: PurchaseRequest, expected: RequestStatus) -> None:
        if request.status != expected:
            raise InvalidState(
                f"Purchase request is not {expected.value}",
                {"request_id": request.id, "status": request.status.value},
            )

    def _buyer_with_wallet(self, request: PurchaseRequest) -> User:
        buyer = self._user(request.buyer_id)
        if not buyer.wallet_ref:
            raise MissingWallet(buyer.id)
        return buyer

    def _transition(
        self,
        land: Land,
        request: PurchaseRequest,
        expected: RequestStatus,
        new: RequestStatus,
    ) -> None:
        if not self.store.transition_request(land.id, request.id, expected, new):
            # Somebody else moved the request between our read and our write
            raise InvalidState(
                f"Purchase request is not {expected.value}",
                {"request_id": request.id, "expected": expected.value},
            )
        logger.info("Purchase request %s: %s -> %s", request.id, expected.value, new.value)

    def _notify(
        self,
        user_id: str,
        type: NotificationType,
        message: str,
        land_id: str,
    ) -> None:
        # The transition is already committed; a lost notification must not undo it
        try:
            self.notifications.emit(user_id, type, message, land_id)
        except StoreFailure as e:
            logger.error("Error adding notification for user %s: %s", user_id, e)
