"""
Backend-neutral query vocabulary.

A predicate is a mapping ``field → condition`` where every entry must hold
(conjunction). A condition is one of:

    plain value        equality (``None`` matches a missing / null field)
    Pattern(...)       regular-expression search, optionally case-insensitive
    OneOf([...])       membership in a set of values

Both backends interpret the same predicates: the file store evaluates them
in Python via ``matches()``, the SQL store compiles them to WHERE clauses.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

Predicate = Mapping[str, Any]

ASCENDING = 1
DESCENDING = -1


@dataclass(frozen=True)
class Pattern:
    """Regular-expression condition on a string field."""
    regex: str
    ignore_case: bool = False

    @classmethod
    def exact(cls, text: str, *, ignore_case: bool = True) -> "Pattern":
        """Whole-value match on literal *text*."""
        return cls(f"^{re.escape(text)}$", ignore_case)

    @classmethod
    def contains(cls, text: str, *, ignore_case: bool = True) -> "Pattern":
        """Substring match on literal *text*."""
        return cls(re.escape(text), ignore_case)

    @property
    def expression(self) -> str:
        # Inline flag so the same string works for SQL REGEXP backends
        return f"(?i){self.regex}" if self.ignore_case else self.regex

    def search(self, value: Any) -> bool:
        if not isinstance(value, str):
            return False
        return re.search(self.expression, value) is not None


@dataclass(frozen=True)
class OneOf:
    """Membership condition."""
    values: Tuple[Any, ...]

    def __init__(self, values: Iterable[Any]):
        object.__setattr__(self, "values", tuple(values))


def _condition_holds(value: Any, condition: Any) -> bool:
    if isinstance(condition, Pattern):
        return condition.search(value)
    if isinstance(condition, OneOf):
        return value in condition.values
    return value == condition


def matches(record: Mapping[str, Any], predicate: Optional[Predicate]) -> bool:
    if not predicate:
        return True
    return all(
        _condition_holds(record.get(key), condition)
        for key, condition in predicate.items()
    )


def sort_records(
    records: List[Dict[str, Any]],
    field: str,
    direction: int = ASCENDING,
) -> List[Dict[str, Any]]:
    """Stable sort on one field; missing values sort first ascending."""
    return sorted(
        records,
        key=lambda r: (r.get(field) is not None, r.get(field) if r.get(field) is not None else 0),
        reverse=direction == DESCENDING,
    )


def parse_selector(selector: str) -> Tuple[List[str], List[str]]:
    """Split a space-separated selector into (included, excluded) names."""
    include: List[str] = []
    exclude: List[str] = []
    for token in selector.split():
        if token.startswith("-"):
            exclude.append(token[1:])
        else:
            include.append(token)
    return include, exclude


def project(record: Mapping[str, Any], selector: Optional[str]) -> Dict[str, Any]:
    """
    Apply a field selector to one record.

    ``"name email"``      keep only those fields (plus ``id``)
    ``"a b -id"``         keep only a and b
    ``"-password"``       drop password, keep the rest
    """
    if not selector:
        return dict(record)

    include, exclude = parse_selector(selector)
    if include:
        projected: Dict[str, Any] = {}
        if "id" not in exclude and "id" in record:
            projected["id"] = record["id"]
        for name in include:
            if name in record:
                projected[name] = record[name]
        return projected

    return {k: v for k, v in record.items() if k not in exclude}
