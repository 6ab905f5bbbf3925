"""
Ledger gateway tests: variant selection, fingerprinting and the absorption helper.

No test here needs a running chain.
"""

from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from land_market.config import Settings
from land_market.exceptions import LedgerUnavailable
from land_market.ledger import (
    Absorbed,
    DisabledLedger,
    Mirrored,
    Web3Ledger,
    build_ledger,
    document_fingerprint,
    try_mirror,
)
from land_market.models import LedgerRegistration

# Well-known development key (first Hardhat/Ganache account); holds nothing real
DEV_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


class TestFingerprint:
    def test_fixed_length(self):
        assert len(document_fingerprint(b"")) == 64
        assert len(document_fingerprint(b"x" * 10_000)) == 64

    def test_deterministic_and_content_sensitive(self):
        assert document_fingerprint(b"deed") == document_fingerprint(b"deed")
        assert document_fingerprint(b"deed") != document_fingerprint(b"deed!")


class TestDisabledLedger:
    @pytest.mark.parametrize(
        "call",
        [
            lambda l: l.submit_approval(1, "0xabc"),
            lambda l: l.submit_rejection(1, "0xabc"),
            lambda l: l.submit_transfer(1, "0xabc"),
            lambda l: l.read_verification(1),
            lambda l: l.read_transaction("0x01"),
        ],
    )
    def test_every_call_is_unavailable(self, call):
        with pytest.raises(LedgerUnavailable):
            call(DisabledLedger())

    def test_not_configured(self):
        assert DisabledLedger().configured is False


class TestBuildLedger:
    def test_disabled_without_configuration(self):
        ledger = build_ledger(Settings(rpc_url=None, contract_address=None, private_key=None))
        assert isinstance(ledger, DisabledLedger)

    def test_partial_configuration_stays_disabled(self):
        settings = Settings(rpc_url="http://127.0.0.1:8545", contract_address=None, private_key=None)
        assert isinstance(build_ledger(settings), DisabledLedger)

    def test_web3_when_fully_configured(self):
        settings = Settings(
            rpc_url="http://127.0.0.1:8545",
            contract_address=DEV_CONTRACT,
            private_key=DEV_PRIVATE_KEY,
        )
        ledger = build_ledger(settings)
        assert isinstance(ledger, Web3Ledger)
        assert ledger.configured is True

    def test_bad_key_falls_back_to_disabled(self):
        settings = Settings(
            rpc_url="http://127.0.0.1:8545",
            contract_address=DEV_CONTRACT,
            private_key="not-a-key",
        )
        ledger = build_ledger(settings)
        assert isinstance(ledger, DisabledLedger)
        assert "failed to initialise" in ledger.reason


class TestWeb3LedgerOffline:
    """A node that refuses connections must surface as LedgerUnavailable."""

    @pytest.fixture
    def ledger(self) -> Web3Ledger:
        return Web3Ledger(
            rpc_url="http://127.0.0.1:1",
            contract_address=DEV_CONTRACT,
            private_key=DEV_PRIVATE_KEY,
            timeout=1.0,
        )

    def test_read_verification(self, ledger):
        with pytest.raises(LedgerUnavailable):
            ledger.read_verification(1)

    def test_submit_transfer(self, ledger):
        with pytest.raises(LedgerUnavailable):
            ledger.submit_transfer(1, "0xFFcf8FDEE72ac11b5c542428B35EEF5769C409f0")

    def test_bad_wallet_is_unavailable_not_crash(self, ledger):
        with pytest.raises(LedgerUnavailable):
            ledger.submit_approval(1, "not-a-wallet")


class TestTryMirror:
    def test_success_is_mirrored(self):
        result = try_mirror("echo", lambda x: x * 2, 21)
        assert isinstance(result, Mirrored)
        assert result.ok and result.value == 42

    def test_ledger_unavailable_is_absorbed(self, caplog):
        def down():
            raise LedgerUnavailable("node offline")

        with caplog.at_level(logging.WARNING, logger="land_market.ledger"):
            result = try_mirror("registration", down)

        assert isinstance(result, Absorbed)
        assert not result.ok
        assert "node offline" in result.reason
        assert "registration" in caplog.text

    def test_unexpected_errors_are_absorbed_too(self):
        def signer_broken():
            raise ValueError("bad signature")

        result = try_mirror("transfer", signer_broken)
        assert isinstance(result, Absorbed)
        assert "bad signature" in result.reason


class TestWeb3Registration:
    @pytest.fixture
    def ledger(self, monkeypatch) -> Web3Ledger:
        ledger = Web3Ledger(
            rpc_url="http://127.0.0.1:1",
            contract_address=DEV_CONTRACT,
            private_key=DEV_PRIVATE_KEY,
        )
        ledger.sent = []
        monkeypatch.setattr(
            ledger, "_transact", lambda name, *args: ledger.sent.append((name, *args))
        )
        monkeypatch.setattr(ledger, "_call", lambda name, *args: 4)
        return ledger

    def _registration(self, size: str) -> LedgerRegistration:
        return LedgerRegistration(
            location="Lot 7",
            size=Decimal(size),
            price=Decimal("1.5"),
            document_fingerprint="f" * 64,
        )

    def test_whole_size_sent_as_is(self, ledger, caplog):
        with caplog.at_level(logging.WARNING, logger="land_market.ledger"):
            assert ledger.submit_registration(self._registration("20000")) == 4
        [(name, location, size, price, fingerprint)] = ledger.sent
        assert (name, size) == ("registerLand", 20000)
        assert price == 1_500_000_000_000_000_000
        assert "truncated" not in caplog.text

    def test_fractional_size_truncation_is_logged(self, ledger, caplog):
        with caplog.at_level(logging.WARNING, logger="land_market.ledger"):
            ledger.submit_registration(self._registration("0.5"))
        assert ledger.sent[0][2] == 0
        assert "truncated from 0.5 to 0" in caplog.text
