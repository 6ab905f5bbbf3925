#!/usr/bin/env python3
"""
Land Market — Entry Point
=========================

Walks one parcel through the full purchase lifecycle against a throwaway
in-memory store: register seller and buyer, list a land, request, approve,
complete, then print the final state and everybody's notifications.

Usage:
    python main.py                                  # Ledger disabled (store only)
    ETHEREUM_RPC_URL=... SMART_CONTRACT_ADDRESS=... PRIVATE_KEY=... python main.py
"""

from __future__ import annotations

import logging
import sys

from land_market.config import Settings
from land_market.ledger import build_ledger
from land_market.marketplace import Marketplace
from land_market.models import Land, LandInput, ListingFiles, Notification, UploadedFile
from land_market.store import RecordStore

# ─── ANSI Color Constants ───────────────────────────────────────────

_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _print_land(land: Land, names: dict[str, str]) -> None:
    print(f"  Title:       {_BOLD}{land.title}{_RESET}")
    print(f"  Location:    {land.location}")
    print(f"  Size:        {land.size}")
    print(f"  Price:       {land.price}")
    print(f"  Owner:       {names.get(land.owner_id, land.owner_id)}")
    ledger = str(land.ledger_id) if land.on_ledger else f"{_DIM}not on ledger{_RESET}"
    print(f"  Ledger id:   {ledger}")
    print(f"  Verified:    {land.is_verified}")
    print(f"  For sale:    {land.is_for_sale}")
    print(f"  Fingerprint: {_DIM}{land.document_fingerprint[:16]}...{_RESET}")
    for request in land.purchase_requests:
        buyer = names.get(request.buyer_id, request.buyer_id)
        print(f"  Request:     {buyer} {_DIM}→{_RESET} {request.status.value}")


def _print_inbox(name: str, notifications: list[Notification]) -> None:
    print(f"\n  {_CYAN}{_BOLD}{name} ({len(notifications)}){_RESET}")
    for n in notifications:
        marker = " " if n.is_read else f"{_YELLOW}*{_RESET}"
        print(f"   {marker} [{n.type.value}] {n.message}")


def _step(label: str) -> None:
    print(f"  {_GREEN}✓{_RESET} {label}")


# ─── Main ────────────────────────────────────────────────────────────


def main() -> int:
    settings = Settings.load()
    logging.basicConfig(level=settings.log_level)

    market = Marketplace(RecordStore.from_url("sqlite://"), build_ledger(settings), settings)

    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  LAND MARKET WALKTHROUGH{_RESET}")
    print(f"{'=' * _WIDTH}")
    mode = "configured" if market.ledger.configured else "disabled (store only)"
    print(f"  Ledger:      {mode}")
    print(f"{'─' * _WIDTH}")

    seller = market.accounts.register_user(
        "Sarah Seller", "sarah@example.com", "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1", "seller"
    )
    buyer = market.accounts.register_user(
        "Bob Buyer", "bob@example.com", "0xFFcf8FDEE72ac11b5c542428B35EEF5769C409f0", "buyer"
    )
    names = {seller.id: seller.name, buyer.id: buyer.name}
    _step("Registered seller and buyer")

    land = market.registry.register(
        LandInput(
            title="Orchard Parcel 7",
            description="Two hectares of terraced orchard with well access",
            location="Lot 7, Hillside Road",
            size="20000",
            price="12.5",
        ),
        seller.id,
        ListingFiles(
            images=[UploadedFile(reference="img://orchard-1.jpg", content_type="image/jpeg")],
            documents=[
                UploadedFile(
                    reference="doc://orchard-title.pdf",
                    content=b"%PDF-1.4 title deed for Lot 7",
                    content_type="application/pdf",
                )
            ],
        ),
    )
    _step(f"Listed '{land.title}'")

    request = market.workflow.request_purchase(land.id, buyer.id)
    _step(f"{buyer.name} requested to purchase")

    market.workflow.approve_purchase(land.id, request.id, seller.id)
    _step(f"{seller.name} approved the request")

    completion = market.workflow.complete_purchase(land.id, request.id, "0x" + "ab" * 32)
    _step("Payment settled and ownership transferred")
    print(f"    {_DIM}payment verified on ledger: {completion.payment_verified}{_RESET}")
    print(f"    {_DIM}transfer mirrored on ledger: {completion.transfer_mirrored}{_RESET}")

    print(f"{'─' * _WIDTH}")
    _print_land(completion.land, names)
    print(f"{'─' * _WIDTH}")
    _print_inbox(seller.name, market.notifications.list_for(seller.id))
    _print_inbox(buyer.name, market.notifications.list_for(buyer.id))

    print(f"\n{'=' * _WIDTH}")
    ok = completion.land.owner_id == buyer.id and not completion.land.is_for_sale
    if ok:
        print(f"  {_GREEN}{_BOLD}{buyer.name.upper()} NOW OWNS {land.title.upper()}{_RESET}")
    else:
        print(f"  {_YELLOW}{_BOLD}OWNERSHIP DID NOT TRANSFER{_RESET}")
    print(f"{'=' * _WIDTH}\n")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
