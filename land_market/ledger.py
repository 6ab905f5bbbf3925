"""
Ledger Gateway — the only door to the blockchain.

The ledger is a trust-enhancing MIRROR of facts already committed in the
record store, never a gate. Two variants, chosen once at startup:

  - Web3Ledger: talks to a LandRegistry contract over JSON-RPC (web3.py).
  - DisabledLedger: no RPC configured; every call raises LedgerUnavailable.

Callers never touch a gateway method directly for a write path; they go
through ``try_mirror``, the single place where ledger failures are absorbed
and logged. A mirror call that fails leaves the primary operation intact.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from web3 import Web3
from web3.exceptions import TransactionNotFound

from .config import Settings
from .exceptions import LedgerUnavailable
from .models import LedgerRegistration, TransactionReceipt

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ─── Contract ABI (only the functions we call) ──────────────────────

LAND_REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "name": "registerLand",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "location", "type": "string"},
            {"name": "size", "type": "uint256"},
            {"name": "price", "type": "uint256"},
            {"name": "documentHash", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "name": "landCount",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "getLandDetails",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "landId", "type": "uint256"}],
        "outputs": [
            {"name": "id", "type": "uint256"},
            {"name": "location", "type": "string"},
            {"name": "size", "type": "uint256"},
            {"name": "price", "type": "uint256"},
            {"name": "documentHash", "type": "string"},
            {"name": "owner", "type": "address"},
            {"name": "isVerified", "type": "bool"},
        ],
    },
    {
        "name": "approveRequest",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "landId", "type": "uint256"},
            {"name": "buyer", "type": "address"},
        ],
        "outputs": [],
    },
    {
        "name": "rejectRequest",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "landId", "type": "uint256"},
            {"name": "buyer", "type": "address"},
        ],
        "outputs": [],
    },
    {
        "name": "transferLand",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "landId", "type": "uint256"},
            {"name": "newOwner", "type": "address"},
        ],
        "outputs": [],
    },
]

# Position of isVerified in getLandDetails' return tuple
_IS_VERIFIED_INDEX = 6

DEFAULT_GAS_LIMIT = 300_000


# ─── Fingerprint ────────────────────────────────────────────────────


def document_fingerprint(content: bytes) -> str:
    """Fixed-length (64 hex chars) SHA-256 fingerprint of a document."""
    return hashlib.sha256(content).hexdigest()


# ─── Gateway interface ──────────────────────────────────────────────


class LedgerGateway(ABC):
    """Everything the marketplace may ask of the ledger.

    Every method may block on network confirmation and may raise
    LedgerUnavailable; none of them is a correctness precondition.
    """

    configured: bool = False

    @abstractmethod
    def submit_registration(self, registration: LedgerRegistration) -> int:
        """Register a listing; returns the ledger-assigned id."""

    @abstractmethod
    def submit_approval(self, ledger_id: int, wallet_ref: str) -> str:
        """Record an approved request; returns the transaction hash."""

    @abstractmethod
    def submit_rejection(self, ledger_id: int, wallet_ref: str) -> str:
        """Release a rejected request; returns the transaction hash."""

    @abstractmethod
    def submit_transfer(self, ledger_id: int, wallet_ref: str) -> str:
        """Mirror an ownership transfer; returns the transaction hash."""

    @abstractmethod
    def read_verification(self, ledger_id: int) -> bool:
        """Current verification flag of a registered listing."""

    @abstractmethod
    def read_transaction(self, tx_hash: str) -> TransactionReceipt | None:
        """Look up a transaction; None if the ledger has never seen it."""


class DisabledLedger(LedgerGateway):
    """Stand-in when no ledger is configured. Every call is unavailable."""

    configured = False

    def __init__(self, reason: str = "Ledger is not configured"):
        self.reason = reason

    def _unavailable(self) -> LedgerUnavailable:
        return LedgerUnavailable(self.reason)

    def submit_registration(self, registration: LedgerRegistration) -> int:
        raise self._unavailable()

    def submit_approval(self, ledger_id: int, wallet_ref: str) -> str:
        raise self._unavailable()

    def submit_rejection(self, ledger_id: int, wallet_ref: str) -> str:
        raise self._unavailable()

    def submit_transfer(self, ledger_id: int, wallet_ref: str) -> str:
        raise self._unavailable()

    def read_verification(self, ledger_id: int) -> bool:
        raise self._unavailable()

    def read_transaction(self, tx_hash: str) -> TransactionReceipt | None:
        raise self._unavailable()


class Web3Ledger(LedgerGateway):
    """LandRegistry contract reached over JSON-RPC.

    The HTTP provider and the receipt wait both honour ``timeout`` so a hung
    node resolves to LedgerUnavailable instead of blocking forever.
    """

    configured = True

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        chain_id: int = 1337,
        timeout: float = 30.0,
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ):
        self._w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self._account = self._w3.eth.account.from_key(private_key)
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=LAND_REGISTRY_ABI,
        )
        self._chain_id = chain_id
        self._timeout = timeout
        self._gas_limit = gas_limit

    # ─── Writes ─────────────────────────────────────────────────────

    def submit_registration(self, registration: LedgerRegistration) -> int:
        # The contract stores size as a whole-unit uint256
        size = int(registration.size)
        if size != registration.size:
            logger.warning(
                "Ledger size for %s truncated from %s to %s",
                registration.location, registration.size, size,
            )
        self._transact(
            "registerLand",
            registration.location,
            size,
            Web3.to_wei(registration.price, "ether"),
            registration.document_fingerprint,
        )
        # The contract numbers lands sequentially; the newest one is ours
        return int(self._call("landCount"))

    def submit_approval(self, ledger_id: int, wallet_ref: str) -> str:
        return self._transact("approveRequest", ledger_id, self._address(wallet_ref))

    def submit_rejection(self, ledger_id: int, wallet_ref: str) -> str:
        return self._transact("rejectRequest", ledger_id, self._address(wallet_ref))

    def submit_transfer(self, ledger_id: int, wallet_ref: str) -> str:
        return self._transact("transferLand", ledger_id, self._address(wallet_ref))

    # ─── Reads ──────────────────────────────────────────────────────

    def read_verification(self, ledger_id: int) -> bool:
        details = self._call("getLandDetails", ledger_id)
        return bool(details[_IS_VERIFIED_INDEX])

    def read_transaction(self, tx_hash: str) -> TransactionReceipt | None:
        try:
            tx = self._w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise LedgerUnavailable(f"Transaction lookup failed: {e}", {"tx_hash": tx_hash}) from e

        return TransactionReceipt(
            tx_hash=tx_hash,
            block_number=tx.get("blockNumber"),
            sender=tx.get("from"),
            recipient=tx.get("to"),
            value=tx.get("value"),
        )

    # ─── Plumbing ───────────────────────────────────────────────────

    @staticmethod
    def _address(wallet_ref: str) -> str:
        try:
            return Web3.to_checksum_address(wallet_ref)
        except (ValueError, TypeError) as e:
            raise LedgerUnavailable(f"Wallet '{wallet_ref}' is not a ledger address") from e

    def _call(self, function_name: str, *args: Any) -> Any:
        try:
            return getattr(self._contract.functions, function_name)(*args).call()
        except Exception as e:
            raise LedgerUnavailable(f"{function_name} call failed: {e}") from e

    def _transact(self, function_name: str, *args: Any) -> str:
        """Build, sign, send and wait for one contract transaction."""
        try:
            function = getattr(self._contract.functions, function_name)(*args)
            tx = function.build_transaction({
                "chainId": self._chain_id,
                "from": self._account.address,
                "gas": self._gas_limit,
                "gasPrice": self._w3.eth.gas_price,
                "nonce": self._w3.eth.get_transaction_count(self._account.address),
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("Ledger %s sent: %s", function_name, Web3.to_hex(tx_hash))
            receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._timeout)
        except Exception as e:
            raise LedgerUnavailable(f"{function_name} transaction failed: {e}") from e

        if receipt.get("status") != 1:
            raise LedgerUnavailable(
                f"{function_name} transaction reverted", {"tx_hash": Web3.to_hex(tx_hash)}
            )
        logger.info("Ledger %s confirmed in block %s", function_name, receipt.get("blockNumber"))
        return Web3.to_hex(tx_hash)


def build_ledger(settings: Settings) -> LedgerGateway:
    """Resolve the ledger variant once, at startup."""
    if not settings.ledger_configured:
        logger.warning(
            "ETHEREUM_RPC_URL, SMART_CONTRACT_ADDRESS or PRIVATE_KEY not set. "
            "Ledger features are disabled."
        )
        return DisabledLedger()

    assert settings.rpc_url and settings.contract_address and settings.private_key
    try:
        return Web3Ledger(
            rpc_url=settings.rpc_url,
            contract_address=settings.contract_address,
            private_key=settings.private_key,
            chain_id=settings.chain_id,
            timeout=settings.ledger_timeout,
        )
    except Exception as e:
        logger.error("Error initializing ledger client: %s", e)
        return DisabledLedger(f"Ledger client failed to initialise: {e}")


# ─── Mirror helper ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Mirrored(Generic[T]):
    """The ledger accepted the call."""

    value: T
    ok: bool = True


@dataclass(frozen=True)
class Absorbed:
    """The ledger call failed; the failure was logged and dropped."""

    reason: str
    ok: bool = False


MirrorResult = Union[Mirrored[T], Absorbed]


def try_mirror(description: str, op: Callable[..., T], *args: Any) -> MirrorResult[T]:
    """Run one ledger operation, absorbing ANY failure.

    This is the single enforcement point of "the ledger never fails the
    primary operation": a signer error or a contract mismatch is absorbed
    exactly like a network outage.
    """
    try:
        value = op(*args)
    except LedgerUnavailable as e:
        logger.warning("Ledger %s skipped: %s", description, e)
        return Absorbed(str(e))
    except Exception as e:
        logger.error("Ledger %s failed unexpectedly: %s", description, e)
        return Absorbed(str(e))
    logger.info("Ledger %s succeeded", description)
    return Mirrored(value)
