"""
Composition root — builds every component once and wires them together.

The ledger variant is resolved here, at startup, and injected; business
logic never looks up a global client.
"""

from __future__ import annotations

import logging

from .accounts import AccountService
from .config import Settings
from .ledger import LedgerGateway, build_ledger
from .notifications import NotificationEmitter
from .registry import ListingRegistry
from .store import RecordStore
from .workflow import PurchaseWorkflow

logger = logging.getLogger(__name__)


class Marketplace:
    """All marketplace services sharing one store and one ledger.

    Usage:
        market = Marketplace.from_settings(Settings.load())
        land = market.registry.register(...)
        market.workflow.request_purchase(land.id, buyer.id)
    """

    def __init__(self, store: RecordStore, ledger: LedgerGateway, settings: Settings | None = None):
        self.settings = settings or Settings()
        self.store = store
        self.ledger = ledger
        self.accounts = AccountService(store)
        self.notifications = NotificationEmitter(store)
        self.registry = ListingRegistry(store, ledger, self.settings.verification_mode)
        self.workflow = PurchaseWorkflow(store, ledger, self.notifications)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Marketplace":
        store = RecordStore.from_url(settings.database_url)
        ledger = build_ledger(settings)
        logger.info(
            "Marketplace ready (ledger %s, verification mode %s)",
            "configured" if ledger.configured else "disabled",
            settings.verification_mode.value,
        )
        return cls(store, ledger, settings)
