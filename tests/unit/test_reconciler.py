"""Unit tests for inventory reconciliation."""

import pytest
from conftest import USER_ID, FakeInventoryRepository

from services.inventory.models import Impact, classify_impact
from services.inventory.reconciler import InventoryReconciler, VerdictKind, aggregate_lines


@pytest.fixture
def reconciler(inventory: FakeInventoryRepository) -> InventoryReconciler:
    return InventoryReconciler(inventory)


@pytest.mark.parametrize(
    ("gap", "impact"),
    [(1, Impact.LOW), (5, Impact.LOW), (6, Impact.MEDIUM), (10, Impact.MEDIUM), (11, Impact.HIGH)],
)
def test_classify_impact(gap: int, impact: Impact) -> None:
    assert classify_impact(gap) == impact


def test_aggregate_lines_sums_repeats_in_order() -> None:
    assert aggregate_lines([("B", 1), ("A", 2), ("B", 3)]) == {"B": 4, "A": 2}


class TestInventoryReconciler:
    """Tests for InventoryReconciler.reconcile."""

    @pytest.mark.asyncio
    async def test_exact_stock_is_sufficient(
        self, reconciler: InventoryReconciler, inventory: FakeInventoryRepository
    ) -> None:
        inventory.add("W-100", 10)

        verdict = await reconciler.reconcile(USER_ID, [("W-100", 10)])

        assert verdict.kind == VerdictKind.SUFFICIENT
        assert verdict.is_sufficient is True

    @pytest.mark.asyncio
    async def test_no_lines_is_sufficient(self, reconciler: InventoryReconciler) -> None:
        verdict = await reconciler.reconcile(USER_ID, [])

        assert verdict.kind == VerdictKind.SUFFICIENT

    @pytest.mark.asyncio
    async def test_shortfall_details(
        self, reconciler: InventoryReconciler, inventory: FakeInventoryRepository
    ) -> None:
        inventory.add("W-100", 10)
        inventory.add("B-7", 50)

        verdict = await reconciler.reconcile(USER_ID, [("W-100", 11), ("B-7", 50)])

        assert verdict.kind == VerdictKind.INSUFFICIENT
        assert verdict.insufficient_skus == ["W-100"]
        shortfall = verdict.shortfalls[0]
        assert (shortfall.requested, shortfall.on_hand, shortfall.gap) == (11, 10, 1)
        assert shortfall.impact == Impact.LOW

    @pytest.mark.asyncio
    async def test_repeated_sku_summed_before_comparison(
        self, reconciler: InventoryReconciler, inventory: FakeInventoryRepository
    ) -> None:
        inventory.add("A", 5)

        verdict = await reconciler.reconcile(USER_ID, [("A", 3), ("A", 3)])

        assert verdict.kind == VerdictKind.INSUFFICIENT
        assert verdict.shortfalls[0].requested == 6

    @pytest.mark.asyncio
    async def test_unknown_takes_precedence_but_keeps_shortfalls(
        self, reconciler: InventoryReconciler, inventory: FakeInventoryRepository
    ) -> None:
        inventory.add("A", 1)

        verdict = await reconciler.reconcile(USER_ID, [("A", 4), ("GHOST", 1)])

        assert verdict.kind == VerdictKind.UNKNOWN_SKUS
        assert verdict.unknown_skus == ["GHOST"]
        assert verdict.insufficient_skus == ["A"]

    @pytest.mark.asyncio
    async def test_other_users_stock_is_invisible(
        self, reconciler: InventoryReconciler, inventory: FakeInventoryRepository
    ) -> None:
        inventory.add("A", 100, user_id="user-2")

        verdict = await reconciler.reconcile(USER_ID, [("A", 1)])

        assert verdict.kind == VerdictKind.UNKNOWN_SKUS

    @pytest.mark.asyncio
    async def test_reconcile_does_not_mutate(
        self, reconciler: InventoryReconciler, inventory: FakeInventoryRepository
    ) -> None:
        inventory.add("A", 5)

        await reconciler.reconcile(USER_ID, [("A", 2)])

        assert inventory.quantity("A") == 5
        assert inventory.decrement_calls == []
