"""expressions.py — Filter/condition/update expression building.

A Condition is a predicate over a single stored item. Every condition can:
    - render itself into DynamoDB expression syntax (placeholders allocated by
      ExpressionBuilder), for stores that push filtering to DynamoDB
    - evaluate itself against a plain dict, for stores that filter in process

Repositories only build conditions; the store decides how to execute them.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from compass_events.config import EVENT_STATUS_ACTIVE

__all__ = [
    "And",
    "AtLeast",
    "AttributeExists",
    "AttributeNotExists",
    "Condition",
    "Contains",
    "Equals",
    "ExpressionBuilder",
    "build_set_expression",
    "event_list_condition",
    "not_deleted",
    "registration_list_condition",
    "user_list_condition",
]

_DELETED_AT = "deleted_at"


class ExpressionBuilder:
    """Allocates #nN / :vN placeholders. One attribute name maps to one placeholder."""

    def __init__(self) -> None:
        self.names: Dict[str, str] = {}
        self.values: Dict[str, Any] = {}
        self._by_attr: Dict[str, str] = {}

    def name(self, attr: str) -> str:
        placeholder = self._by_attr.get(attr)
        if placeholder is None:
            placeholder = f"#n{len(self._by_attr)}"
            self._by_attr[attr] = placeholder
            self.names[placeholder] = attr
        return placeholder

    def value(self, value: Any) -> str:
        placeholder = f":v{len(self.values)}"
        self.values[placeholder] = value
        return placeholder


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


class Condition:
    def render(self, builder: ExpressionBuilder) -> str:
        raise NotImplementedError

    def matches(self, item: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def __and__(self, other: "Condition") -> "And":
        return And(self, other)

    def __repr__(self) -> str:
        builder = ExpressionBuilder()
        expr = self.render(builder)
        return f"<{type(self).__name__} {expr} names={builder.names} values={builder.values}>"


class Equals(Condition):
    def __init__(self, attr: str, value: Any) -> None:
        self.attr = attr
        self.value = value

    def render(self, builder: ExpressionBuilder) -> str:
        return f"{builder.name(self.attr)} = {builder.value(self.value)}"

    def matches(self, item: Dict[str, Any]) -> bool:
        return self.attr in item and item[self.attr] == self.value


class Contains(Condition):
    """Case-sensitive substring match against the full stored string."""

    def __init__(self, attr: str, substring: str) -> None:
        self.attr = attr
        self.substring = substring

    def render(self, builder: ExpressionBuilder) -> str:
        return f"contains({builder.name(self.attr)}, {builder.value(self.substring)})"

    def matches(self, item: Dict[str, Any]) -> bool:
        current = item.get(self.attr)
        return isinstance(current, str) and self.substring in current


class AtLeast(Condition):
    """Inclusive lower bound. Strings compare lexicographically, so ISO-8601 dates order correctly."""

    def __init__(self, attr: str, bound: Any) -> None:
        self.attr = attr
        self.bound = bound

    def render(self, builder: ExpressionBuilder) -> str:
        return f"{builder.name(self.attr)} >= {builder.value(self.bound)}"

    def matches(self, item: Dict[str, Any]) -> bool:
        current = item.get(self.attr)
        if current is None or type(current) is not type(self.bound):
            return False
        return current >= self.bound


class AttributeExists(Condition):
    def __init__(self, attr: str) -> None:
        self.attr = attr

    def render(self, builder: ExpressionBuilder) -> str:
        return f"attribute_exists({builder.name(self.attr)})"

    def matches(self, item: Dict[str, Any]) -> bool:
        return self.attr in item


class AttributeNotExists(Condition):
    def __init__(self, attr: str) -> None:
        self.attr = attr

    def render(self, builder: ExpressionBuilder) -> str:
        return f"attribute_not_exists({builder.name(self.attr)})"

    def matches(self, item: Dict[str, Any]) -> bool:
        return self.attr not in item


class And(Condition):
    def __init__(self, *conditions: Condition) -> None:
        flat: List[Condition] = []
        for cond in conditions:
            if isinstance(cond, And):
                flat.extend(cond.conditions)
            else:
                flat.append(cond)
        if not flat:
            raise ValueError("And() requires at least one condition")
        self.conditions: Tuple[Condition, ...] = tuple(flat)

    def render(self, builder: ExpressionBuilder) -> str:
        return " AND ".join(cond.render(builder) for cond in self.conditions)

    def matches(self, item: Dict[str, Any]) -> bool:
        return all(cond.matches(item) for cond in self.conditions)


def build_set_expression(fields: Dict[str, Any], builder: ExpressionBuilder) -> str:
    """SET clause for every field given, in insertion order."""
    if not fields:
        raise ValueError("build_set_expression requires at least one field")
    clauses = [f"{builder.name(attr)} = {builder.value(value)}" for attr, value in fields.items()]
    return "SET " + ", ".join(clauses)


# ---------------------------------------------------------------------------
# Listing filters
# ---------------------------------------------------------------------------


def not_deleted() -> Condition:
    return AttributeNotExists(_DELETED_AT)


def _conjunction(parts: Iterable[Optional[Condition]]) -> Condition:
    present = [p for p in parts if p is not None]
    if len(present) == 1:
        return present[0]
    return And(*present)


def user_list_condition(
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    role: Optional[str] = None,
) -> Condition:
    """Non-deleted users, optionally narrowed by name/email substring and exact role.

    `role` must already be the effective role (see authorization.scope_user_listing).
    """
    return _conjunction([
        Equals("role", role) if role else None,
        Contains("name", name) if name else None,
        Contains("email", email) if email else None,
        not_deleted(),
    ])


def event_list_condition(
    *,
    name: Optional[str] = None,
    date: Optional[str] = None,
    status: Optional[str] = None,
) -> Condition:
    """Events filter. Unspecified status means active and not soft-deleted.

    An explicit non-active status (inactive) also matches soft-deleted events,
    which is how deleted events stay reachable for tooling.
    """
    effective_status = status or EVENT_STATUS_ACTIVE
    return _conjunction([
        Contains("name", name) if name else None,
        AtLeast("date", date) if date else None,
        Equals("status", effective_status),
        not_deleted() if effective_status == EVENT_STATUS_ACTIVE else None,
    ])


def registration_list_condition(*, participant_id: str, event_id: Optional[str] = None) -> Condition:
    return _conjunction([
        Equals("participant_id", participant_id),
        Equals("event_id", event_id) if event_id else None,
        not_deleted(),
    ])
