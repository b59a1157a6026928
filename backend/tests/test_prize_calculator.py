from decimal import Decimal

import pytest

from backend.app.settlement import PrizeBreakdown, PrizeCalculator, SettlementError, post_ledger_entry
from backend.models import TransactionType, User


def test_two_player_room_with_default_fee():
    breakdown = PrizeCalculator.calculate(Decimal("50"), 2)

    assert breakdown.total_prize_pool == Decimal("100.00")
    assert breakdown.platform_fee == Decimal("10.00")
    assert breakdown.winner_amount == Decimal("90.00")
    assert breakdown.validate_balance_equation()


def test_fee_rounds_half_up_and_still_balances():
    breakdown = PrizeCalculator.calculate(Decimal("10.05"), 3, fee_percent=Decimal("5"))

    # 30.15 * 5% = 1.5075
    assert breakdown.platform_fee == Decimal("1.51")
    assert breakdown.winner_amount + breakdown.platform_fee == breakdown.total_prize_pool


def test_zero_fee():
    breakdown = PrizeCalculator.calculate(Decimal("25"), 4, fee_percent=0)
    assert breakdown.platform_fee == Decimal("0.00")
    assert breakdown.winner_amount == Decimal("100.00")


@pytest.mark.parametrize("players, percent", [(0, 10), (2, -1), (2, 101)])
def test_invalid_inputs(players, percent):
    with pytest.raises(ValueError):
        PrizeCalculator.calculate(Decimal("50"), players, fee_percent=percent)


def test_unbalanced_breakdown_is_detected():
    breakdown = PrizeBreakdown(
        total_prize_pool=Decimal("100.00"),
        platform_fee=Decimal("10.00"),
        winner_amount=Decimal("95.00"),
    )
    assert not breakdown.validate_balance_equation()


def test_ledger_entry_snapshots_balance():
    user = User(name="Ravi", phone="9000000000", balance=Decimal("40.00"))

    tx = post_ledger_entry(user, TransactionType.GAME_ENTRY, Decimal("15"), description="Entry")

    assert user.balance == Decimal("25.00")
    assert (tx.balance_before, tx.balance_after) == (Decimal("40.00"), Decimal("25.00"))


def test_ledger_entry_never_overdraws():
    user = User(name="Ravi", phone="9000000000", balance=Decimal("10.00"))

    with pytest.raises(SettlementError) as excinfo:
        post_ledger_entry(user, TransactionType.ADMIN_DEBIT, Decimal("15"), description="Debit")

    assert excinfo.value.status_code == 400
    assert user.balance == Decimal("10.00")


def test_platform_fee_is_not_a_user_movement():
    user = User(name="Ravi", phone="9000000000", balance=Decimal("10.00"))
    with pytest.raises(ValueError):
        post_ledger_entry(user, TransactionType.PLATFORM_FEE, Decimal("1"), description="Fee")
