"""Account sequencers: pure orderings of account snapshots for withdrawal."""

from typing import Iterable, List, Optional, Sequence, Tuple

from calculators import RmdCalculator
from models import AccountSnapshot, SpendingContext


def tax_efficient_key(account: AccountSnapshot) -> Tuple[int, float, str]:
    return (account.tax_treatment.priority, account.balance, account.account_id)


def _with_balance(accounts: Iterable[AccountSnapshot]) -> List[AccountSnapshot]:
    return [a for a in accounts if a.balance > 0.0]


class TaxEfficientSequencer:
    """Taxable first, then pre-tax, Roth and HSA; smaller balances first within a tier."""

    name = "Tax-Efficient"
    description = "Withdraws from taxable accounts first, then pre-tax, then Roth, then HSA."

    def order(self, accounts: Iterable[AccountSnapshot]) -> Tuple[AccountSnapshot, ...]:
        return tuple(sorted(_with_balance(accounts), key=tax_efficient_key))

    def sequence(self, context: SpendingContext) -> Tuple[AccountSnapshot, ...]:
        return self.order(context.simulation.account_snapshots)


class RmdFirstSequencer:
    """RMD-subject accounts by balance descending, then the rest in tax-efficient order."""

    name = "RMD-First"
    description = "Prioritizes accounts subject to required minimum distributions."

    def __init__(self, rmd_calculator: Optional[RmdCalculator] = None):
        self.rmd_calculator = rmd_calculator or RmdCalculator()
        self.fallback = TaxEfficientSequencer()

    def order(self, accounts: Iterable[AccountSnapshot]) -> Tuple[AccountSnapshot, ...]:
        funded = _with_balance(accounts)
        rmd_accounts = [a for a in funded if self.rmd_calculator.is_subject_to_rmd(a.account_type)]
        rmd_accounts.sort(key=lambda a: (-a.balance, a.account_id))
        others = [a for a in funded if not self.rmd_calculator.is_subject_to_rmd(a.account_type)]
        return tuple(rmd_accounts) + self.fallback.order(others)

    def sequence(self, context: SpendingContext) -> Tuple[AccountSnapshot, ...]:
        return self.order(context.simulation.account_snapshots)


class CustomSequencer:
    """Caller-defined account order; unlisted accounts follow in tax-efficient order."""

    name = "Custom"
    description = "Withdraws in a user-specified account order."

    def __init__(self, account_order: Sequence[str]):
        self.account_order = tuple(account_order)
        self.fallback = TaxEfficientSequencer()

    def order(self, accounts: Iterable[AccountSnapshot]) -> Tuple[AccountSnapshot, ...]:
        funded = _with_balance(accounts)
        by_id = {a.account_id: a for a in funded}
        listed = tuple(by_id[aid] for aid in self.account_order if aid in by_id)
        rest = [a for a in funded if a.account_id not in self.account_order]
        return listed + self.fallback.order(rest)

    def sequence(self, context: SpendingContext) -> Tuple[AccountSnapshot, ...]:
        return self.order(context.simulation.account_snapshots)


def build_sequencer(kind: str, custom_order: Sequence[str] = (), rmd_calculator: Optional[RmdCalculator] = None):
    """Returns the sequencer for a configured kind; ``auto`` is resolved per month by the engine."""
    if kind == "tax_efficient":
        return TaxEfficientSequencer()
    if kind == "rmd_first":
        return RmdFirstSequencer(rmd_calculator)
    if kind == "custom":
        return CustomSequencer(custom_order)
    raise ValueError(f"Unknown sequencer '{kind}'")


def select_default_sequencer(rmd_eligible: bool, rmd_calculator: Optional[RmdCalculator] = None):
    if rmd_eligible:
        return RmdFirstSequencer(rmd_calculator)
    return TaxEfficientSequencer()
