"""Inventory reconciliation for invoice line items.

Checks whether a user's stock covers the quantities an invoice requests and
returns a verdict the workflow routes on. The check is read-only; stock is
only mutated when an invoice is approved (see services.workflow.service).

Unknown SKUs and insufficient quantities are reported separately because
they lead to different customer notifications.
"""

import logging
from collections.abc import Iterable
from enum import Enum

from pydantic import BaseModel, Field

from services.inventory.models import Impact, ShortageSnapshot, classify_impact
from services.storage.base import InventoryRepository

logger = logging.getLogger(__name__)


class VerdictKind(str, Enum):
    SUFFICIENT = "sufficient"
    INSUFFICIENT = "insufficient"
    UNKNOWN_SKUS = "unknown_skus"


class Shortfall(BaseModel):
    """A SKU whose on-hand stock is below the requested quantity."""

    sku: str
    requested: int
    on_hand: int
    gap: int
    impact: Impact

    def snapshot(self) -> ShortageSnapshot:
        return ShortageSnapshot(
            expected=self.requested, actual=self.on_hand, gap=self.gap, impact=self.impact
        )


class ReconciliationVerdict(BaseModel):
    """Outcome of reconciling invoice lines against inventory.

    When an invoice has both unknown SKUs and short stock the verdict kind is
    UNKNOWN_SKUS, but the shortfalls are still carried for reporting.
    """

    kind: VerdictKind
    shortfalls: list[Shortfall] = Field(default_factory=list)
    unknown_skus: list[str] = Field(default_factory=list)

    @property
    def is_sufficient(self) -> bool:
        return self.kind == VerdictKind.SUFFICIENT

    @property
    def insufficient_skus(self) -> list[str]:
        return [s.sku for s in self.shortfalls]


def aggregate_lines(lines: Iterable[tuple[str, int]]) -> dict[str, int]:
    """Sum requested quantities per SKU, keeping first-seen order."""
    totals: dict[str, int] = {}
    for sku, quantity in lines:
        totals[sku] = totals.get(sku, 0) + quantity
    return totals


class InventoryReconciler:
    """Read-only sufficiency check of invoice lines against a user's inventory."""

    def __init__(self, inventory: InventoryRepository) -> None:
        self.inventory = inventory

    async def reconcile(
        self, user_id: str, lines: Iterable[tuple[str, int]]
    ) -> ReconciliationVerdict:
        """Check requested quantities against on-hand stock.

        Args:
            user_id: Owner of the inventory
            lines: Ordered (sku, quantity) pairs; repeated SKUs are summed

        Returns:
            Verdict: sufficient, insufficient (with shortfalls) or unknown SKUs
        """
        requested = aggregate_lines(lines)
        if not requested:
            return ReconciliationVerdict(kind=VerdictKind.SUFFICIENT)

        stock = await self.inventory.find_by_skus(user_id, list(requested))

        unknown: list[str] = []
        shortfalls: list[Shortfall] = []
        for sku, quantity in requested.items():
            item = stock.get(sku)
            if item is None:
                unknown.append(sku)
                continue
            if item.quantity < quantity:
                gap = quantity - item.quantity
                shortfalls.append(
                    Shortfall(
                        sku=sku,
                        requested=quantity,
                        on_hand=item.quantity,
                        gap=gap,
                        impact=classify_impact(gap),
                    )
                )

        if unknown:
            logger.info(f"Unknown SKUs for user {user_id}: {unknown}")
            kind = VerdictKind.UNKNOWN_SKUS
        elif shortfalls:
            logger.info(
                f"Insufficient stock for user {user_id}: "
                f"{[(s.sku, s.requested, s.on_hand) for s in shortfalls]}"
            )
            kind = VerdictKind.INSUFFICIENT
        else:
            kind = VerdictKind.SUFFICIENT

        return ReconciliationVerdict(kind=kind, shortfalls=shortfalls, unknown_skus=unknown)
