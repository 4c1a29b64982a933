"""
Transaction Classification Service

Derives the expense/income flags stored on every transaction.

Rules, in order:
- Movements between the user's own accounts (transfers, loan payments,
  credit card payments) are neither expense nor income.
- Only credit and depository accounts participate; investment, loan and
  other account types never classify.
- Plaid's sign convention applies: a positive amount is money leaving the
  account (expense), a negative amount is money coming in (income), zero is
  neither.
"""
import logging
import math
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

EXCLUDED_CATEGORIES = frozenset({
    "TRANSFER",
    "TRANSFER_IN",
    "TRANSFER_OUT",
    "LOAN_PAYMENTS",
    "CREDIT_CARD_PAYMENTS",
})

CLASSIFIED_ACCOUNT_TYPES = frozenset({"credit", "depository"})


class TransactionClassifier:
    """Classifies transactions as expense, income or neither."""

    @staticmethod
    def classify(account_type: Optional[str], amount, category: Optional[str]) -> Tuple[bool, bool]:
        """
        Classify a transaction.

        Args:
            account_type: Plaid account type of the owning account
            amount: Signed amount (positive = money out)
            category: Plaid personal finance primary category

        Returns:
            (is_expense, is_income); never both True
        """
        if category and str(category).strip().upper() in EXCLUDED_CATEGORIES:
            return False, False

        kind = str(account_type).strip().lower() if account_type else ""
        if kind not in CLASSIFIED_ACCOUNT_TYPES:
            return False, False

        try:
            value = float(amount)
        except (TypeError, ValueError):
            return False, False
        if math.isnan(value):
            return False, False

        return value > 0, value < 0


# Singleton instance
transaction_classifier = TransactionClassifier()
