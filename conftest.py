"""Pytest configuration — project root importable, shared marketplace fixtures."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from land_market.config import Settings  # noqa: E402
from land_market.exceptions import LedgerUnavailable  # noqa: E402
from land_market.ledger import LedgerGateway  # noqa: E402
from land_market.marketplace import Marketplace  # noqa: E402
from land_market.models import (  # noqa: E402
    LandInput,
    LedgerRegistration,
    ListingFiles,
    TransactionReceipt,
    UploadedFile,
    VerificationMode,
)
from land_market.store import RecordStore  # noqa: E402

SELLER_WALLET = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"
BUYER_WALLET = "0xFFcf8FDEE72ac11b5c542428B35EEF5769C409f0"
OTHER_BUYER_WALLET = "0x22d491Bde2303f2f43325b2108D26f1eAbA1e32b"
PAYMENT_TX = "0x" + "ab" * 32


@pytest.fixture(autouse=True)
def _no_real_ledger(monkeypatch):
    """Never let a developer's .env point the suite at a real chain."""
    for name in ("ETHEREUM_RPC_URL", "SMART_CONTRACT_ADDRESS", "PRIVATE_KEY"):
        monkeypatch.delenv(name, raising=False)


# ─── Ledger doubles ──────────────────────────────────────────────────


class FakeLedger(LedgerGateway):
    """In-memory ledger. Put method names in ``failing`` to make them raise."""

    configured = True

    def __init__(self) -> None:
        self.lands: dict[int, dict] = {}
        self.transactions: dict[str, TransactionReceipt] = {}
        self.calls: list[tuple] = []
        self.failing: set[str] = set()

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failing:
            raise LedgerUnavailable(f"{name} unavailable")

    def calls_to(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def submit_registration(self, registration: LedgerRegistration) -> int:
        self._record("submit_registration", registration)
        ledger_id = len(self.lands) + 1
        self.lands[ledger_id] = {
            "fingerprint": registration.document_fingerprint,
            "verified": True,
            "owner": None,
        }
        return ledger_id

    def submit_approval(self, ledger_id: int, wallet_ref: str) -> str:
        self._record("submit_approval", ledger_id, wallet_ref)
        return "0xapproval"

    def submit_rejection(self, ledger_id: int, wallet_ref: str) -> str:
        self._record("submit_rejection", ledger_id, wallet_ref)
        return "0xrejection"

    def submit_transfer(self, ledger_id: int, wallet_ref: str) -> str:
        self._record("submit_transfer", ledger_id, wallet_ref)
        self.lands[ledger_id]["owner"] = wallet_ref
        return "0xtransfer"

    def read_verification(self, ledger_id: int) -> bool:
        self._record("read_verification", ledger_id)
        if ledger_id not in self.lands:
            raise LedgerUnavailable(f"land {ledger_id} unknown")
        return self.lands[ledger_id]["verified"]

    def read_transaction(self, tx_hash: str) -> TransactionReceipt | None:
        self._record("read_transaction", tx_hash)
        return self.transactions.get(tx_hash)


class UnreachableLedger(LedgerGateway):
    """Every call blows up with a raw network error, not LedgerUnavailable."""

    configured = True

    def __init__(self) -> None:
        self.attempts = 0

    def _fail(self, *args):
        self.attempts += 1
        raise ConnectionError("connection refused")

    submit_registration = _fail
    submit_approval = _fail
    submit_rejection = _fail
    submit_transfer = _fail
    read_verification = _fail
    read_transaction = _fail


# ─── Builders ────────────────────────────────────────────────────────


def make_files(images: int = 1, documents: int = 1) -> ListingFiles:
    return ListingFiles(
        images=[
            UploadedFile(reference=f"img://{i}.jpg", content=b"jpeg", content_type="image/jpeg")
            for i in range(images)
        ],
        documents=[
            UploadedFile(
                reference=f"doc://{i}.pdf",
                content=b"%PDF-1.4 title deed",
                content_type="application/pdf",
            )
            for i in range(documents)
        ],
    )


def make_land_input(**overrides) -> LandInput:
    fields = {
        "title": "Orchard Parcel 7",
        "description": "Terraced orchard with well access",
        "location": "Lot 7, Hillside Road",
        "size": "20000",
        "price": "12.5",
    }
    fields.update(overrides)
    return LandInput(**fields)


def build_market(ledger: LedgerGateway, database_url: str = "sqlite://") -> Marketplace:
    settings = Settings(database_url=database_url, verification_mode=VerificationMode.WALLET)
    return Marketplace(RecordStore.from_url(database_url), ledger, settings)


# ─── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def market(ledger: FakeLedger) -> Marketplace:
    return build_market(ledger)


@pytest.fixture
def seller(market: Marketplace):
    return market.accounts.register_user("Sarah Seller", "sarah@example.com", SELLER_WALLET, "seller")


@pytest.fixture
def buyer(market: Marketplace):
    return market.accounts.register_user("Bob Buyer", "bob@example.com", BUYER_WALLET, "buyer")


@pytest.fixture
def other_buyer(market: Marketplace):
    return market.accounts.register_user(
        "Carol Buyer", "carol@example.com", OTHER_BUYER_WALLET, "buyer"
    )


@pytest.fixture
def land(market: Marketplace, seller):
    return market.registry.register(make_land_input(), seller.id, make_files())
