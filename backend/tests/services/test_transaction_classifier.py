import math

import pytest

from budgee.services.transaction_classifier import (
    EXCLUDED_CATEGORIES,
    TransactionClassifier,
    transaction_classifier,
)


@pytest.mark.parametrize("account_type", ["depository", "credit", "Depository", " credit "])
def test_positive_amount_is_expense(account_type):
    assert TransactionClassifier.classify(account_type, 50.0, "FOOD_AND_DRINK") == (True, False)


def test_negative_amount_is_income():
    assert TransactionClassifier.classify("depository", -2500.0, "INCOME") == (False, True)


def test_zero_amount_is_neither():
    assert TransactionClassifier.classify("depository", 0, "GENERAL_MERCHANDISE") == (False, False)


@pytest.mark.parametrize("category", sorted(EXCLUDED_CATEGORIES))
def test_excluded_categories_never_classify(category):
    assert TransactionClassifier.classify("depository", 75.0, category) == (False, False)
    assert TransactionClassifier.classify("credit", -75.0, category.lower()) == (False, False)


@pytest.mark.parametrize("account_type", ["investment", "loan", "other", "", None])
def test_other_account_types_never_classify(account_type):
    assert TransactionClassifier.classify(account_type, 20.0, "FOOD_AND_DRINK") == (False, False)


@pytest.mark.parametrize("amount", [None, "not-a-number", math.nan])
def test_unusable_amounts_are_neither(amount):
    assert TransactionClassifier.classify("credit", amount, "SHOPPING") == (False, False)


def test_missing_category_still_classifies_by_sign():
    assert TransactionClassifier.classify("credit", 12.5, None) == (True, False)


def test_never_both_flags():
    for amount in (-10, -0.01, 0, 0.01, 10):
        is_expense, is_income = transaction_classifier.classify("depository", amount, None)
        assert not (is_expense and is_income)
