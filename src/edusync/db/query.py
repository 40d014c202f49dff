"""Selector matching for store queries.

A selector is a dict of field -> condition, all conditions ANDed:
    {"userId": "u1"}                      equality
    {"type": {"$in": ["quiz", "lesson"]}} inclusion
    {"score": {"$gte": 60, "$lt": 90}}    range
Dotted field names reach into nested objects ("data.content").
"""

from __future__ import annotations

from typing import Any, Callable

Selector = dict[str, Any]

_MISSING = object()


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(value: Any, operand: Any) -> bool:
        if value is _MISSING or value is None:
            return False
        try:
            return op(value, operand)
        except TypeError:
            return False

    return check


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": lambda value, operand: value is not _MISSING and value == operand,
    "$ne": lambda value, operand: value is _MISSING or value != operand,
    "$in": lambda value, operand: value is not _MISSING and value in operand,
    "$nin": lambda value, operand: value is _MISSING or value not in operand,
    "$gt": _compare(lambda a, b: a > b),
    "$gte": _compare(lambda a, b: a >= b),
    "$lt": _compare(lambda a, b: a < b),
    "$lte": _compare(lambda a, b: a <= b),
}


def _resolve(doc: dict[str, Any], field: str) -> Any:
    current: Any = doc
    for part in field.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_operator_dict(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(isinstance(k, str) and k.startswith("$") for k in condition)
    )


def validate_selector(selector: Selector | None) -> None:
    """Reject selectors using unknown operators.

    Raises:
        ValueError: If an operator is not supported
    """
    for field, condition in (selector or {}).items():
        if _is_operator_dict(condition):
            for op in condition:
                if op not in OPERATORS:
                    raise ValueError(f"Unsupported selector operator '{op}' on '{field}'")


def matches(doc: dict[str, Any], selector: Selector | None) -> bool:
    """Check whether a document satisfies a selector.

    An empty or None selector matches every document.
    """
    for field, condition in (selector or {}).items():
        value = _resolve(doc, field)
        if _is_operator_dict(condition):
            for op, operand in condition.items():
                if op not in OPERATORS:
                    raise ValueError(f"Unsupported selector operator '{op}' on '{field}'")
                if not OPERATORS[op](value, operand):
                    return False
        elif value is _MISSING or value != condition:
            # {"classId": None} also matches documents without classId
            if not (condition is None and value is _MISSING):
                return False
    return True


def sort_documents(
    docs: list[dict[str, Any]],
    sort_by: str | None,
    descending: bool = False,
) -> list[dict[str, Any]]:
    """Sort documents by a (dotted) field; missing values sort first."""
    if not sort_by:
        return docs

    def key(doc: dict[str, Any]) -> tuple[int, Any]:
        value = _resolve(doc, sort_by)
        if value is _MISSING or value is None:
            return (0, 0)
        return (1, value)

    return sorted(docs, key=key, reverse=descending)
