import pytest

from sequencer import (
    CustomSequencer,
    RmdFirstSequencer,
    TaxEfficientSequencer,
    build_sequencer,
    select_default_sequencer,
)
from models import SimulationView
from tests.helpers import make_context, make_snapshot


def _ids(accounts):
    return [a.account_id for a in accounts]


def test_rmd_first_orders_rmd_accounts_by_balance_descending():
    accounts = [
        make_snapshot("A", "traditional_ira", 50_000),
        make_snapshot("B", "traditional_401k", 120_000),
        make_snapshot("C", "taxable_brokerage", 30_000),
        make_snapshot("D", "roth_ira", 40_000),
    ]
    assert _ids(RmdFirstSequencer().order(accounts)) == ["B", "A", "C", "D"]


def test_tax_efficient_orders_by_treatment_then_balance():
    accounts = [
        make_snapshot("roth", "roth_ira", 8_000),
        make_snapshot("pretax", "traditional_ira", 5_000),
        make_snapshot("taxable", "taxable_brokerage", 10_000),
        make_snapshot("hsa", "hsa", 1_000),
        make_snapshot("cash", "cash", 2_000),
    ]
    assert _ids(TaxEfficientSequencer().order(accounts)) == ["cash", "taxable", "pretax", "roth", "hsa"]


def test_zero_balance_accounts_are_excluded():
    accounts = [
        make_snapshot("empty", "taxable_brokerage", 0),
        make_snapshot("ira", "traditional_ira", 0),
        make_snapshot("roth", "roth_ira", 10),
    ]
    assert _ids(TaxEfficientSequencer().order(accounts)) == ["roth"]
    assert _ids(RmdFirstSequencer().order(accounts)) == ["roth"]


def test_sequence_is_deterministic_for_equal_balances():
    accounts = [
        make_snapshot("b", "taxable_brokerage", 1_000),
        make_snapshot("a", "taxable_brokerage", 1_000),
    ]
    sequencer = TaxEfficientSequencer()
    assert _ids(sequencer.order(accounts)) == ["a", "b"]
    assert _ids(sequencer.order(reversed(accounts))) == ["a", "b"]


def test_sequence_reads_accounts_from_context():
    context = make_context(balance=10_000)
    view = SimulationView(
        account_snapshots=(
            make_snapshot("roth", "roth_ira", 5_000),
            make_snapshot("taxable", "taxable_brokerage", 5_000),
        ),
        total_portfolio_balance=10_000,
    )
    context = context.model_copy(update={"simulation": view})
    assert _ids(TaxEfficientSequencer().sequence(context)) == ["taxable", "roth"]


def test_custom_sequencer_puts_unlisted_accounts_last():
    accounts = [
        make_snapshot("taxable", "taxable_brokerage", 1_000),
        make_snapshot("roth", "roth_ira", 1_000),
        make_snapshot("ira", "traditional_ira", 1_000),
    ]
    assert _ids(CustomSequencer(["roth"]).order(accounts)) == ["roth", "taxable", "ira"]


def test_build_and_default_sequencer_selection():
    assert isinstance(build_sequencer("tax_efficient"), TaxEfficientSequencer)
    assert isinstance(build_sequencer("rmd_first"), RmdFirstSequencer)
    assert isinstance(build_sequencer("custom", ["a"]), CustomSequencer)
    with pytest.raises(ValueError):
        build_sequencer("auto")
    assert isinstance(select_default_sequencer(True), RmdFirstSequencer)
    assert isinstance(select_default_sequencer(False), TaxEfficientSequencer)
