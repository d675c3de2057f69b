import pytest

from planner import RmdAwarePlanner, WithdrawalPlanner
from tests.helpers import make_snapshot


def test_greedy_allocation_drains_first_account_then_next():
    accounts = [make_snapshot("acct1", "taxable_brokerage", 10_000), make_snapshot("acct2", "traditional_ira", 20_000)]
    plan = WithdrawalPlanner().plan(15_000, accounts, "Fixed")

    assert plan.meets_target
    assert plan.adjusted_withdrawal == pytest.approx(15_000)
    first, second = plan.account_withdrawals
    assert (first.account_id, first.amount, first.new_balance) == ("acct1", 10_000, 0)
    assert first.is_depleted and first.is_partial
    assert (second.account_id, second.amount, second.new_balance) == ("acct2", 5_000, 15_000)
    assert not second.is_partial
    assert plan.total_taxable_amount == 5_000
    assert plan.total_tax_free_amount == 10_000
    assert plan.strategy_used == "Fixed"


def test_shortfall_is_reported_not_raised():
    accounts = [make_snapshot("a", "taxable_brokerage", 10_000), make_snapshot("b", "roth_ira", 20_000)]
    plan = WithdrawalPlanner().plan(50_000, accounts)

    assert not plan.meets_target
    assert plan.adjusted_withdrawal == pytest.approx(30_000)
    assert plan.shortfall == pytest.approx(20_000)
    assert all(w.new_balance == 0 for w in plan.account_withdrawals)
    assert plan.depleted_account_count == 2


def test_zero_target_and_empty_accounts():
    accounts = [make_snapshot("a", "taxable_brokerage", 0), make_snapshot("b", "roth_ira", 100)]
    assert WithdrawalPlanner().plan(0, accounts).account_withdrawals == ()

    plan = WithdrawalPlanner().plan(50, accounts)
    assert [w.account_id for w in plan.account_withdrawals] == ["b"]

    with pytest.raises(ValueError):
        WithdrawalPlanner().plan(-1, accounts)


def test_rmd_aware_plan_takes_rmds_first_and_reports_surplus():
    accounts = [make_snapshot("taxable", "taxable_brokerage", 50_000), make_snapshot("ira", "traditional_ira", 100_000)]
    plan = RmdAwarePlanner().plan_with_rmds(1_000, accounts, {"ira": 1_500})

    by_id = {w.account_id: w.amount for w in plan.account_withdrawals}
    assert by_id == {"ira": pytest.approx(1_500)}
    assert plan.target_withdrawal == pytest.approx(1_500)
    assert plan.metadata["rmd_required"] == pytest.approx(1_500)
    assert plan.metadata["rmd_surplus"] == pytest.approx(500)
    assert plan.meets_target


def test_rmd_aware_plan_covers_remaining_need_from_sequence():
    accounts = [make_snapshot("taxable", "taxable_brokerage", 50_000), make_snapshot("ira", "traditional_ira", 100_000)]
    plan = RmdAwarePlanner().plan_with_rmds(4_000, accounts, {"ira": 1_000})

    by_id = {w.account_id: w.amount for w in plan.account_withdrawals}
    assert by_id == {"taxable": pytest.approx(3_000), "ira": pytest.approx(1_000)}
    assert plan.metadata["rmd_surplus"] == pytest.approx(0)
    assert plan.adjusted_withdrawal == pytest.approx(4_000)


def test_rmd_aware_plan_without_rmds_matches_greedy_plan():
    accounts = [make_snapshot("a", "taxable_brokerage", 1_000), make_snapshot("b", "roth_ira", 1_000)]
    assert RmdAwarePlanner().plan_with_rmds(1_500, accounts, {}) == WithdrawalPlanner().plan(1_500, accounts)
