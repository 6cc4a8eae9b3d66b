"""
Sub-account ledger vocabulary.

Every balance mutation is one ledger entry; the entry type fixes the
direction (credit adds to the balance, debit subtracts).
"""
from decimal import Decimal


TX_ALLOCATION = "ALLOCATION"
TX_EXPENSE = "EXPENSE"
TX_TRANSFER_IN = "TRANSFER_IN"
TX_TRANSFER_OUT = "TRANSFER_OUT"
TX_RETURN_TO_MAIN = "RETURN_TO_MAIN"
TX_ADJUSTMENT = "ADJUSTMENT"

CREDIT_TYPES = frozenset({TX_ALLOCATION, TX_TRANSFER_IN})
DEBIT_TYPES = frozenset({TX_EXPENSE, TX_TRANSFER_OUT, TX_RETURN_TO_MAIN})
# ADJUSTMENT goes either way, the caller decides

VALID_TX_TYPES = CREDIT_TYPES | DEBIT_TYPES | {TX_ADJUSTMENT}

SUB_ACCOUNT_TYPES = frozenset({
    "SAVINGS", "EMERGENCY_FUND", "MORTGAGE", "RENT", "UTILITIES",
    "GROCERIES", "ENTERTAINMENT", "HEALTHCARE", "EDUCATION", "VACATION",
    "PAYROLL", "OPERATING_EXPENSES", "TAX_RESERVE", "MARKETING",
    "EQUIPMENT", "INVENTORY", "DEPARTMENT", "PROJECT", "CUSTOM",
})


def is_credit_entry(tx_type: str, is_credit: bool | None = None) -> bool:
    """Direction of an entry of tx_type; ADJUSTMENT needs is_credit."""
    if tx_type in CREDIT_TYPES:
        return True
    if tx_type in DEBIT_TYPES:
        return False
    if tx_type == TX_ADJUSTMENT:
        if is_credit is None:
            raise ValueError("ADJUSTMENT requires an explicit direction")
        return is_credit
    raise ValueError(f"invalid ledger entry type: {tx_type}")


def apply_entry(balance_before: Decimal, amount: Decimal, credit: bool) -> Decimal:
    return balance_before + amount if credit else balance_before - amount


def entry_is_consistent(balance_before: Decimal, balance_after: Decimal, amount: Decimal, credit: bool) -> bool:
    return apply_entry(balance_before, amount, credit) == balance_after
