"""
Withdrawal planning.

A planner turns a target amount and a sequenced account list into a
``SpendingPlan``. Plans are pure data: nothing is withdrawn until the ledger
applies them, and an underfunded plan is reported, never raised.
"""

from typing import Dict, List, Mapping, Optional, Sequence

from constants import SMALL_EPSILON
from models import AccountSnapshot, AccountWithdrawal, SpendingPlan


class WithdrawalPlanner:
    """Greedy allocation: drain each account in sequence order until the target is met."""

    def plan(
        self,
        target: float,
        accounts: Sequence[AccountSnapshot],
        strategy_name: str = "",
    ) -> SpendingPlan:
        if target < 0:
            raise ValueError("Withdrawal target cannot be negative")
        if target <= SMALL_EPSILON:
            return SpendingPlan.no_withdrawal_needed(strategy_name)

        remaining = target
        withdrawals: List[AccountWithdrawal] = []
        for account in accounts:
            if remaining <= SMALL_EPSILON:
                break
            if account.balance <= 0.0:
                continue
            amount = min(remaining, account.balance)
            withdrawals.append(
                AccountWithdrawal(
                    account=account,
                    amount=amount,
                    requested_amount=remaining,
                    prior_balance=account.balance,
                    new_balance=max(0.0, account.balance - amount),
                )
            )
            remaining -= amount

        raised = sum(w.amount for w in withdrawals)
        return SpendingPlan(
            target_withdrawal=target,
            adjusted_withdrawal=raised,
            account_withdrawals=tuple(withdrawals),
            meets_target=target - raised <= SMALL_EPSILON,
            strategy_used=strategy_name,
        )


class RmdAwarePlanner(WithdrawalPlanner):
    """
    Plans withdrawals that also satisfy required minimum distributions.

    Every RMD account first gives up its monthly RMD, then the sequence covers
    whatever the spending target still needs. The plan's target is the larger
    of the spending target and the total RMD; ``metadata`` carries the RMD
    total and the surplus raised beyond the spending target.
    """

    def plan_with_rmds(
        self,
        spending_target: float,
        accounts: Sequence[AccountSnapshot],
        monthly_rmds: Optional[Mapping[str, float]] = None,
        strategy_name: str = "",
    ) -> SpendingPlan:
        monthly_rmds = {aid: amount for aid, amount in (monthly_rmds or {}).items() if amount > 0.0}
        if not monthly_rmds:
            return self.plan(spending_target, accounts, strategy_name)

        by_id = {a.account_id: a for a in accounts}
        taken: Dict[str, float] = {}
        requested: Dict[str, float] = {}
        rmd_raised = 0.0
        for account_id, rmd in monthly_rmds.items():
            account = by_id.get(account_id)
            if account is None or account.balance <= 0.0:
                continue
            amount = min(rmd, account.balance)
            taken[account_id] = amount
            requested[account_id] = rmd
            rmd_raised += amount

        remaining = spending_target - rmd_raised
        for account in accounts:
            if remaining <= SMALL_EPSILON:
                break
            available = account.balance - taken.get(account.account_id, 0.0)
            if available <= 0.0:
                continue
            amount = min(remaining, available)
            requested[account.account_id] = requested.get(account.account_id, 0.0) + remaining
            taken[account.account_id] = taken.get(account.account_id, 0.0) + amount
            remaining -= amount

        withdrawals = []
        for account in accounts:
            amount = taken.get(account.account_id, 0.0)
            if amount <= 0.0:
                continue
            withdrawals.append(
                AccountWithdrawal(
                    account=account,
                    amount=amount,
                    requested_amount=requested[account.account_id],
                    prior_balance=account.balance,
                    new_balance=max(0.0, account.balance - amount),
                )
            )

        total_rmd = sum(monthly_rmds.values())
        target = max(spending_target, total_rmd)
        raised = sum(w.amount for w in withdrawals)
        return SpendingPlan(
            target_withdrawal=target,
            adjusted_withdrawal=raised,
            account_withdrawals=tuple(withdrawals),
            meets_target=target - raised <= SMALL_EPSILON,
            strategy_used=strategy_name,
            metadata={
                "spending_target": spending_target,
                "rmd_required": total_rmd,
                "rmd_surplus": max(0.0, raised - spending_target),
            },
        )
