"""
Rule condition trees.

A rule's conditions are stored as a nested JSON document:

    {"and": [...]}                                   all children must match
    {"or": [...]}                                    any child must match
    {"field": "merchant_name", "op": "contains", "value": "coffee"}

Documents are parsed once, when a rule is written or loaded, into an
immutable tree whose leaf values carry their concrete type (text, number,
list of text). Evaluation dispatches on that type, so an operator applied to
the wrong kind of value is an ordinary ``False`` rather than an error.
"""
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union


class InvalidConditionError(ValueError):
    """Raised when a condition document does not have a valid tree shape."""


@dataclass(frozen=True)
class TextValue:
    value: str


@dataclass(frozen=True)
class NumberValue:
    value: float


@dataclass(frozen=True)
class TextListValue:
    values: Tuple[str, ...]


@dataclass(frozen=True)
class UnsupportedValue:
    """Any JSON value no operator accepts (null, bool, object, ...)."""
    raw: Any


ConditionValue = Union[TextValue, NumberValue, TextListValue, UnsupportedValue]


@dataclass(frozen=True)
class Leaf:
    field: str
    op: str
    value: ConditionValue


@dataclass(frozen=True)
class AllOf:
    children: Tuple["Condition", ...]


@dataclass(frozen=True)
class AnyOf:
    children: Tuple["Condition", ...]


Condition = Union[Leaf, AllOf, AnyOf]


@dataclass(frozen=True)
class TransactionSnapshot:
    """The transaction fields a condition can reference."""
    name: Optional[str]
    merchant_name: Optional[str]
    amount: Optional[float]
    account: Optional[str]


TEXT_FIELDS = ("name", "merchant_name", "account")
NUMBER_FIELDS = ("amount",)


def parse_value(raw: Any) -> ConditionValue:
    # bool is an int subclass; a JSON true/false is not a number here
    if isinstance(raw, bool):
        return UnsupportedValue(raw)
    if isinstance(raw, str):
        return TextValue(raw)
    if isinstance(raw, (int, float)):
        return NumberValue(float(raw))
    if isinstance(raw, (list, tuple)):
        return TextListValue(tuple(item for item in raw if isinstance(item, str)))
    return UnsupportedValue(raw)


def _group_children(raw: Any, key: str) -> List[Any]:
    if not isinstance(raw, list):
        raise InvalidConditionError(f"'{key}' must be a list of conditions")
    return raw


def _read_node(document: Any):
    """Return (group class, raw children) for a group node, or (None, Leaf)."""
    if not isinstance(document, dict):
        raise InvalidConditionError("condition must be an object")

    if document.get("and") is not None:
        return AllOf, _group_children(document["and"], "and")
    if document.get("or") is not None:
        return AnyOf, _group_children(document["or"], "or")

    field = document.get("field")
    op = document.get("op", document.get("operator"))
    if not isinstance(field, str) or not field:
        raise InvalidConditionError("leaf condition requires a 'field' string")
    if not isinstance(op, str) or not op:
        raise InvalidConditionError("leaf condition requires an 'op' string")

    return None, Leaf(field=field, op=op, value=parse_value(document.get("value")))


def parse_condition(document: Any) -> Condition:
    """
    Parse a condition document into a condition tree.

    ``and`` takes precedence over ``or`` when a node carries both; a node with
    neither is a leaf. ``operator`` is accepted as an alias of ``op``. Nesting
    depth is not limited; the walk keeps its own stack instead of recursing.

    Raises:
        InvalidConditionError: if the document is not a well-formed tree
    """
    group, payload = _read_node(document)
    if group is None:
        return payload

    # Each frame: group class, raw children, children parsed so far
    stack = [(group, payload, [])]
    while True:
        group, raw_children, parsed = stack[-1]
        if len(parsed) == len(raw_children):
            stack.pop()
            node = group(tuple(parsed))
            if not stack:
                return node
            stack[-1][2].append(node)
            continue

        child_group, child = _read_node(raw_children[len(parsed)])
        if child_group is None:
            parsed.append(child)
        else:
            stack.append((child_group, child, []))


def _text_field(snapshot: TransactionSnapshot, field: str) -> str:
    return getattr(snapshot, field) or ""


def _number_field(snapshot: TransactionSnapshot) -> Optional[float]:
    amount = snapshot.amount
    if amount is None:
        return None
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(value) else value


def _text_equals(actual: str, value: ConditionValue) -> bool:
    return isinstance(value, TextValue) and actual.casefold() == value.value.casefold()


def _text_contains(actual: str, value: ConditionValue) -> bool:
    return isinstance(value, TextValue) and value.value.casefold() in actual.casefold()


def _text_in(actual: str, value: ConditionValue) -> bool:
    if not isinstance(value, TextListValue):
        return False
    folded = actual.casefold()
    return any(folded == option.casefold() for option in value.values)


TEXT_OPERATORS: Dict[str, Callable[[str, ConditionValue], bool]] = {
    "equals": _text_equals,
    "contains": _text_contains,
    "in": _text_in,
}

NUMBER_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "equals": lambda actual, expected: actual == expected,
    "gte": lambda actual, expected: actual >= expected,
    "lte": lambda actual, expected: actual <= expected,
    "gt": lambda actual, expected: actual > expected,
    "lt": lambda actual, expected: actual < expected,
}


def _evaluate_leaf(leaf: Leaf, snapshot: TransactionSnapshot) -> bool:
    if leaf.field in TEXT_FIELDS:
        operator = TEXT_OPERATORS.get(leaf.op)
        if operator is None:
            return False
        return operator(_text_field(snapshot, leaf.field), leaf.value)

    if leaf.field in NUMBER_FIELDS:
        operator = NUMBER_OPERATORS.get(leaf.op)
        if operator is None or not isinstance(leaf.value, NumberValue):
            return False
        actual = _number_field(snapshot)
        if actual is None:
            return False
        return operator(actual, leaf.value.value)

    return False


def evaluate(node: Condition, snapshot: TransactionSnapshot) -> bool:
    """
    Evaluate a parsed condition tree against a transaction snapshot.

    Empty ``and`` is true, empty ``or`` is false. Unknown fields, unknown
    operators and type mismatches evaluate to False. Groups short-circuit,
    and the walk is iterative so any nesting depth terminates.
    """
    if isinstance(node, Leaf):
        return _evaluate_leaf(node, snapshot)
    if not isinstance(node, (AllOf, AnyOf)):
        return False

    # Each frame: group, index of the next child to visit
    stack = [[node, 0]]
    outcome: Optional[bool] = None
    while stack:
        frame = stack[-1]
        group, index = frame
        # False settles an AllOf, True settles an AnyOf
        settles = isinstance(group, AnyOf)
        if outcome is not None:
            if outcome == settles:
                stack.pop()
                continue
            outcome = None

        if index == len(group.children):
            stack.pop()
            outcome = not settles
            continue

        frame[1] = index + 1
        child = group.children[index]
        if isinstance(child, (AllOf, AnyOf)):
            stack.append([child, 0])
        elif isinstance(child, Leaf):
            outcome = bool(_evaluate_leaf(child, snapshot))
        else:
            outcome = False
    return bool(outcome)
