"""The asset status machine.

Valuation, loans and auctions never assign ``Asset.status`` directly; they
push the derived status through :func:`move_asset` so the transitions below
stay the single source of truth.
"""

from __future__ import annotations

from datetime import datetime

from pawnbroker.errors import InvalidStateError
from pawnbroker.models import Asset

ASSET_STATUSES = (
    "submitted",
    "valuating",
    "active",
    "pawned",
    "overdue",
    "in_grace",
    "in_repair",
    "auction",
    "sold",
    "redeemed",
    "closed",
)

ASSET_TRANSITIONS: dict[str, frozenset[str]] = {
    "submitted": frozenset({"valuating", "active", "closed"}),
    "valuating": frozenset({"submitted", "active", "closed"}),
    "active": frozenset({"pawned", "overdue", "in_repair", "closed"}),
    "pawned": frozenset({"overdue", "redeemed", "closed"}),
    "overdue": frozenset({"in_grace", "in_repair", "auction", "redeemed", "closed"}),
    "in_grace": frozenset({"overdue", "auction", "redeemed", "closed"}),
    "in_repair": frozenset({"active", "overdue", "auction", "closed"}),
    "auction": frozenset({"sold", "overdue", "closed"}),
    "sold": frozenset({"closed"}),
    "redeemed": frozenset({"closed"}),
    "closed": frozenset(),
}

# Statuses in which the asset may still be pledged against a loan.
LOAN_HOLDING_STATUSES = frozenset({"pawned", "active", "overdue", "in_grace", "in_repair", "auction"})
RELEASING_STATUSES = frozenset({"sold", "redeemed", "closed"})
AUCTION_ELIGIBLE_STATUSES = frozenset({"overdue", "auction", "in_repair"})

# Loan status -> derived asset status.
LOAN_TO_ASSET = {
    "active": "pawned",
    "overdue": "overdue",
    "in_grace": "overdue",
    "auction": "auction",
    "sold": "sold",
    "redeemed": "redeemed",
    "closed": "closed",
}


def can_move(current: str, target: str) -> bool:
    return current == target or target in ASSET_TRANSITIONS.get(current, frozenset())


def move_asset(asset: Asset, target: str, *, now: datetime) -> bool:
    """Apply ``target`` to ``asset``; False when it is already there."""

    if target not in ASSET_TRANSITIONS:
        raise InvalidStateError(f"Unknown asset status {target}", field="status")
    if asset.status == target:
        return False
    if not can_move(asset.status, target):
        raise InvalidStateError.transition("asset", asset.status, target)

    asset.status = target
    if target in RELEASING_STATUSES:
        asset.active_loan_id = None
    if target == "closed":
        asset.closed_at = now
    return True
