"""Ledger Rules: amount validation and the funds policy for the karma ledger.

Invariants:
    - Balance is ALWAYS derived from the transaction log (credits - debits), never stored
    - amount <= 0 is never a valid transfer
    - Insufficient funds only when the negative-balance policy is off

Design Decisions:
    - Balances are summed in SQL (KarmaLedger.balance); these checks take the result
"""

from karmafarm.core.errors import (
    ErrorContext,
    InsufficientFundsError,
    InvalidAmountError,
)


def check_amount(amount: int, context: ErrorContext | None = None) -> InvalidAmountError | None:
    if amount <= 0:
        return InvalidAmountError(amount, context)
    return None


def check_funds(
    balance: int,
    amount: int,
    allow_negative_balance: bool,
    context: ErrorContext | None = None,
) -> InsufficientFundsError | None:
    if allow_negative_balance:
        return None
    if balance < amount:
        return InsufficientFundsError(balance, amount, context)
    return None
