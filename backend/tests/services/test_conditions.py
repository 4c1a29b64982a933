import pytest

from budgee.services.conditions import (
    AllOf,
    AnyOf,
    InvalidConditionError,
    Leaf,
    NumberValue,
    TextListValue,
    TextValue,
    TransactionSnapshot,
    UnsupportedValue,
    evaluate,
    parse_condition,
    parse_value,
)

COFFEE = TransactionSnapshot(
    name="BLUE BOTTLE #12",
    merchant_name="Blue Bottle Coffee",
    amount=6.5,
    account="Everyday Checking",
)


def test_parse_value_types():
    assert parse_value("coffee") == TextValue("coffee")
    assert parse_value(5) == NumberValue(5.0)
    assert parse_value(2.5) == NumberValue(2.5)
    assert parse_value(["a", 1, "b", None]) == TextListValue(("a", "b"))
    assert parse_value(True) == UnsupportedValue(True)
    assert parse_value(None) == UnsupportedValue(None)


def test_parse_nested_tree():
    tree = parse_condition({
        "and": [
            {"field": "merchant_name", "op": "contains", "value": "coffee"},
            {"or": [
                {"field": "amount", "op": "lt", "value": 10},
                {"field": "account", "operator": "equals", "value": "Rewards Visa"},
            ]},
        ]
    })
    assert isinstance(tree, AllOf)
    assert isinstance(tree.children[1], AnyOf)
    assert tree.children[1].children[1] == Leaf("account", "equals", TextValue("Rewards Visa"))


def test_and_takes_precedence_over_or():
    tree = parse_condition({
        "and": [{"field": "amount", "op": "gt", "value": 1000}],
        "or": [{"field": "amount", "op": "gt", "value": 0}],
    })
    assert isinstance(tree, AllOf)
    assert evaluate(tree, COFFEE) is False


@pytest.mark.parametrize("document", [
    "merchant_name contains coffee",
    {"and": {"field": "name", "op": "equals", "value": "x"}},
    {"or": "nope"},
    {"op": "equals", "value": "x"},
    {"field": "name", "value": "x"},
    {"field": "", "op": "equals", "value": "x"},
    {"and": [{"field": "name", "op": "equals", "value": "x"}, 7]},
])
def test_malformed_documents_raise(document):
    with pytest.raises(InvalidConditionError):
        parse_condition(document)


def test_text_operators_ignore_case():
    assert evaluate(parse_condition({"field": "merchant_name", "op": "contains", "value": "coffee"}), COFFEE)
    assert evaluate(parse_condition({"field": "merchant_name", "op": "equals", "value": "blue bottle coffee"}), COFFEE)
    assert evaluate(
        parse_condition({"field": "account", "op": "in", "value": ["Savings", "everyday checking"]}), COFFEE
    )
    assert not evaluate(parse_condition({"field": "name", "op": "equals", "value": "blue bottle"}), COFFEE)


@pytest.mark.parametrize("op, value, expected", [
    ("equals", 6.5, True),
    ("gte", 6.5, True),
    ("lte", 6.5, True),
    ("gt", 6.5, False),
    ("lt", 10, True),
    ("gt", 1, True),
])
def test_number_operators(op, value, expected):
    assert evaluate(parse_condition({"field": "amount", "op": op, "value": value}), COFFEE) is expected


@pytest.mark.parametrize("document", [
    {"field": "amount", "op": "contains", "value": 6.5},
    {"field": "amount", "op": "gt", "value": "5"},
    {"field": "merchant_name", "op": "gt", "value": 1},
    {"field": "merchant_name", "op": "contains", "value": 6},
    {"field": "merchant_name", "op": "in", "value": "Blue Bottle Coffee"},
    {"field": "category", "op": "equals", "value": "FOOD_AND_DRINK"},
    {"field": "amount", "op": "equals", "value": True},
])
def test_mismatches_are_false_not_errors(document):
    assert evaluate(parse_condition(document), COFFEE) is False


def test_missing_values_on_snapshot():
    empty = TransactionSnapshot(name=None, merchant_name=None, amount=None, account=None)
    assert evaluate(parse_condition({"field": "amount", "op": "lt", "value": 0}), empty) is False
    assert evaluate(parse_condition({"field": "merchant_name", "op": "contains", "value": ""}), empty) is True


def test_empty_groups():
    assert evaluate(parse_condition({"and": []}), COFFEE) is True
    assert evaluate(parse_condition({"or": []}), COFFEE) is False


def _nest(leaf, key, depth):
    document = leaf
    for _ in range(depth):
        document = {key: [document]}
    return document


def test_very_deep_trees_parse_and_evaluate():
    matching = _nest({"field": "merchant_name", "op": "contains", "value": "coffee"}, "and", 5000)
    missing = _nest({"field": "merchant_name", "op": "contains", "value": "tea"}, "or", 5000)

    assert evaluate(parse_condition(matching), COFFEE) is True
    assert evaluate(parse_condition(missing), COFFEE) is False


def test_deep_malformed_leaf_is_reported():
    with pytest.raises(InvalidConditionError):
        parse_condition(_nest({"field": "name"}, "and", 5000))


def test_groups_short_circuit_in_order():
    tree = parse_condition({
        "or": [
            {"and": [{"field": "amount", "op": "gt", "value": 100}, {"field": "name", "op": "equals", "value": "x"}]},
            {"and": []},
        ]
    })
    assert evaluate(tree, COFFEE) is True
    assert evaluate(parse_condition({"and": [{"or": []}, {"and": []}]}), COFFEE) is False
