from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy import and_, not_, or_

if TYPE_CHECKING:
    from sqlalchemy.sql import ColumnElement

# Longest suffixes first so ">=" is not read as "=".
OPERATORS = ("!*", ">=", "<=", "!=", "*", ">", "<", "=")
GROUP_KEYS = ("OR", "AND", "NOT")


def split_key(key: str) -> tuple[str, str]:
    """
    Split a condition key into (attribute, operator).

    Example:
        >>> split_key("amount>=")
        ('amount', '>=')
        >>> split_key("name")
        ('name', '=')
    """
    for operator in OPERATORS:
        if key.endswith(operator) and len(key) > len(operator):
            return key[: -len(operator)], operator
    return key, "="


def _equals(col: Any, value: Any) -> ColumnElement[bool]:
    if value is None:
        return col.is_(None)
    if isinstance(value, (list, tuple, set)):
        return col.in_(list(value))
    return col == value


def _not_equals(col: Any, value: Any) -> ColumnElement[bool]:
    if value is None:
        return col.isnot(None)
    if isinstance(value, (list, tuple, set)):
        return col.not_in(list(value))
    return col != value


def apply_operator(col: Any, operator: str, value: Any) -> ColumnElement[bool]:
    """Apply a condition operator to a SQLAlchemy column."""
    operators: dict[str, Callable[[Any, Any], ColumnElement[bool]]] = {
        "=": _equals,
        "!=": _not_equals,
        ">": lambda c, v: c > v,
        ">=": lambda c, v: c >= v,
        "<": lambda c, v: c < v,
        "<=": lambda c, v: c <= v,
        "*": lambda c, v: c.like(v),
        "!*": lambda c, v: c.not_like(v),
    }

    if operator not in operators:
        supported = ", ".join(operators.keys())
        msg = f"Unsupported operator '{operator}'. Supported: {supported}"
        raise ValueError(msg)

    return operators[operator](col, value)


def _combine(parts: list[ColumnElement[bool]], connector: Callable[..., Any]) -> Any:
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return connector(*parts)


class ConditionBuilder:
    """
    Turns a where/having condition tree into one SQLAlchemy expression.

    Lists and mappings are AND groups. ``OR``, ``AND`` and ``NOT`` keys
    open nested groups. Any other key is ``<attribute><operator>``; the
    attribute is turned into a column by the ``resolve`` callback supplied
    by the mapper, which knows about tables, join aliases and functions.

    Example:
        >>> builder = ConditionBuilder(resolve)
        >>> builder.build([{"industry": "Retail"}, {"OR": {"type": "Customer", "amount>": 10}}])
        # industry = 'Retail' AND (type = 'Customer' OR amount > 10)
    """

    def __init__(self, resolve: Callable[[str], Any]):
        self._resolve = resolve

    def build(self, clause: Any) -> ColumnElement[bool] | None:
        if isinstance(clause, Mapping):
            parts = [self._build_item(key, value) for key, value in clause.items()]
        elif isinstance(clause, (list, tuple)):
            parts = [self.build(member) for member in clause]
        else:
            msg = f"Invalid condition group: {clause!r}"
            raise ValueError(msg)
        return _combine([part for part in parts if part is not None], and_)

    def _members(self, value: Any) -> list[Any]:
        if isinstance(value, Mapping):
            return [{key: item} for key, item in value.items()]
        if isinstance(value, (list, tuple)):
            return list(value)
        msg = f"Invalid condition group: {value!r}"
        raise ValueError(msg)

    def _build_item(self, key: Any, value: Any) -> ColumnElement[bool] | None:
        if not isinstance(key, str):
            return self.build(value)

        group = key.upper()
        if group == "OR":
            parts = [self.build(member) for member in self._members(value)]
            return _combine([p for p in parts if p is not None], or_)
        if group == "AND":
            return self.build(self._members(value))
        if group == "NOT":
            inner = self.build(value)
            return not_(inner) if inner is not None else None

        attribute, operator = split_key(key)
        return apply_operator(self._resolve(attribute), operator, value)
