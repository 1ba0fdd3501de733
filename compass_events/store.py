"""store.py — Table store backends.

TableStore is the only storage surface repositories see:

    get(table, key)                              -> item | None
    put(table, item, condition=None)             -> None
    delete(table, key, condition=None)           -> None
    update(table, key, fields, condition=None)   -> None
    scan_all(table, condition=None)              -> [item, ...]
    scan_page(table, condition, limit, start_key) -> ScanPage

Backends:
    DynamoTableStore   — boto3 low-level client; conditions are rendered into
                         FilterExpression / ConditionExpression and every
                         listing is a full-table Scan.
    InMemoryTableStore — process-local dicts; conditions are evaluated with
                         Condition.matches(). Used for local runs and tests.

A failed condition raises ConditionalCheckFailed. A resume key that does not
name a stored row raises ValidationError (in-memory only; DynamoDB accepts any
well-formed key). Every other store error propagates unmodified.
"""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from compass_events.errors import ConditionalCheckFailed, ValidationError
from compass_events.expressions import Condition, ExpressionBuilder, build_set_expression
from compass_events.serialization import _deserialize, _serialize, _serialize_item

__all__ = [
    "DynamoTableStore",
    "InMemoryTableStore",
    "ScanPage",
    "TableStore",
]

logger = logging.getLogger(__name__)

_DEFAULT_KEY_ATTRS: Tuple[str, ...] = ("id",)


@dataclass
class ScanPage:
    items: List[Dict[str, Any]]
    last_key: Optional[Dict[str, Any]] = None


class TableStore:
    """Base class: key schema bookkeeping shared by both backends."""

    def __init__(self, key_schema: Optional[Mapping[str, Sequence[str]]] = None) -> None:
        self._key_schema: Dict[str, Tuple[str, ...]] = {
            table: tuple(attrs) for table, attrs in (key_schema or {}).items()
        }

    def key_attrs(self, table: str) -> Tuple[str, ...]:
        return self._key_schema.get(table, _DEFAULT_KEY_ATTRS)

    def key_of(self, table: str, item: Dict[str, Any]) -> Dict[str, Any]:
        return {attr: item[attr] for attr in self.key_attrs(table)}

    def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def put(self, table: str, item: Dict[str, Any], condition: Optional[Condition] = None) -> None:
        raise NotImplementedError

    def delete(self, table: str, key: Dict[str, Any], condition: Optional[Condition] = None) -> None:
        raise NotImplementedError

    def update(
        self,
        table: str,
        key: Dict[str, Any],
        fields: Dict[str, Any],
        condition: Optional[Condition] = None,
    ) -> None:
        raise NotImplementedError

    def scan_all(self, table: str, condition: Optional[Condition] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def scan_page(
        self,
        table: str,
        condition: Optional[Condition],
        limit: int,
        start_key: Optional[Dict[str, Any]] = None,
    ) -> ScanPage:
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources. Default: nothing to release."""


# ---------------------------------------------------------------------------
# DynamoDB backend
# ---------------------------------------------------------------------------


def _is_conditional_check_failed(exc: Exception) -> bool:
    if not isinstance(exc, ClientError):
        return False
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _apply_expression_attrs(kwargs: Dict[str, Any], builder: ExpressionBuilder) -> None:
    if builder.names:
        kwargs["ExpressionAttributeNames"] = dict(builder.names)
    if builder.values:
        kwargs["ExpressionAttributeValues"] = {k: _serialize(v) for k, v in builder.values.items()}


class DynamoTableStore(TableStore):
    """TableStore over a boto3 DynamoDB client. The client is injected and shared."""

    def __init__(self, client: Any, key_schema: Optional[Mapping[str, Sequence[str]]] = None) -> None:
        super().__init__(key_schema)
        self._client = client

    def _serialize_key(self, key: Dict[str, Any]) -> Dict[str, Any]:
        return {k: _serialize(v) for k, v in key.items()}

    def _call(self, operation: str, table: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            return getattr(self._client, operation)(TableName=table, **kwargs)
        except ClientError as exc:
            if _is_conditional_check_failed(exc):
                raise ConditionalCheckFailed(f"{operation} condition failed on {table}") from exc
            logger.error("%s failed on %s: %s", operation, table, exc)
            raise
        except BotoCoreError as exc:
            logger.error("%s failed on %s: %s", operation, table, exc)
            raise

    def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        resp = self._call("get_item", table, Key=self._serialize_key(key), ConsistentRead=True)
        raw = resp.get("Item")
        if not raw:
            return None
        return _deserialize(raw)

    def put(self, table: str, item: Dict[str, Any], condition: Optional[Condition] = None) -> None:
        kwargs: Dict[str, Any] = {"Item": _serialize_item(item)}
        if condition is not None:
            builder = ExpressionBuilder()
            kwargs["ConditionExpression"] = condition.render(builder)
            _apply_expression_attrs(kwargs, builder)
        self._call("put_item", table, **kwargs)

    def delete(self, table: str, key: Dict[str, Any], condition: Optional[Condition] = None) -> None:
        kwargs: Dict[str, Any] = {"Key": self._serialize_key(key)}
        if condition is not None:
            builder = ExpressionBuilder()
            kwargs["ConditionExpression"] = condition.render(builder)
            _apply_expression_attrs(kwargs, builder)
        self._call("delete_item", table, **kwargs)

    def update(
        self,
        table: str,
        key: Dict[str, Any],
        fields: Dict[str, Any],
        condition: Optional[Condition] = None,
    ) -> None:
        builder = ExpressionBuilder()
        kwargs: Dict[str, Any] = {
            "Key": self._serialize_key(key),
            "UpdateExpression": build_set_expression(fields, builder),
            "ReturnValues": "NONE",
        }
        if condition is not None:
            kwargs["ConditionExpression"] = condition.render(builder)
        _apply_expression_attrs(kwargs, builder)
        self._call("update_item", table, **kwargs)

    def _scan_kwargs(self, condition: Optional[Condition]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"ConsistentRead": True}
        if condition is not None:
            builder = ExpressionBuilder()
            kwargs["FilterExpression"] = condition.render(builder)
            _apply_expression_attrs(kwargs, builder)
        return kwargs

    def scan_all(self, table: str, condition: Optional[Condition] = None) -> List[Dict[str, Any]]:
        kwargs = self._scan_kwargs(condition)
        items: List[Dict[str, Any]] = []
        while True:
            resp = self._call("scan", table, **kwargs)
            items.extend(_deserialize(raw) for raw in resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return items

    def scan_page(
        self,
        table: str,
        condition: Optional[Condition],
        limit: int,
        start_key: Optional[Dict[str, Any]] = None,
    ) -> ScanPage:
        """Collect up to `limit` matches, following LastEvaluatedKey across raw scan pages.

        The returned last_key is the key of the last collected item, so the next
        call resumes right after it even when a raw page held more matches.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        kwargs = self._scan_kwargs(condition)
        if start_key:
            kwargs["ExclusiveStartKey"] = self._serialize_key(start_key)

        collected: List[Dict[str, Any]] = []
        while True:
            resp = self._call("scan", table, **kwargs)
            raw_items = resp.get("Items", [])
            last_key = resp.get("LastEvaluatedKey")
            for index, raw in enumerate(raw_items):
                collected.append(_deserialize(raw))
                if len(collected) == limit:
                    exhausted = index == len(raw_items) - 1 and not last_key
                    next_key = None if exhausted else self.key_of(table, collected[-1])
                    return ScanPage(collected, next_key)
            if not last_key:
                return ScanPage(collected, None)
            kwargs["ExclusiveStartKey"] = last_key

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryTableStore(TableStore):
    """Insertion-ordered, lock-protected tables with DynamoDB-compatible semantics."""

    def __init__(self, key_schema: Optional[Mapping[str, Sequence[str]]] = None) -> None:
        super().__init__(key_schema)
        self._tables: Dict[str, Dict[Tuple[Any, ...], Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _table(self, table: str) -> Dict[Tuple[Any, ...], Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    def _key_tuple(self, table: str, key: Dict[str, Any]) -> Tuple[Any, ...]:
        return tuple(key[attr] for attr in self.key_attrs(table))

    @staticmethod
    def _check(condition: Optional[Condition], current: Optional[Dict[str, Any]], table: str) -> None:
        if condition is None:
            return
        if not condition.matches(current or {}):
            raise ConditionalCheckFailed(f"condition failed on {table}")

    def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._table(table).get(self._key_tuple(table, key))
            return copy.deepcopy(item) if item is not None else None

    def put(self, table: str, item: Dict[str, Any], condition: Optional[Condition] = None) -> None:
        stored = {k: copy.deepcopy(v) for k, v in item.items() if v is not None}
        with self._lock:
            rows = self._table(table)
            key = self._key_tuple(table, stored)
            self._check(condition, rows.get(key), table)
            rows[key] = stored

    def delete(self, table: str, key: Dict[str, Any], condition: Optional[Condition] = None) -> None:
        with self._lock:
            rows = self._table(table)
            ktuple = self._key_tuple(table, key)
            self._check(condition, rows.get(ktuple), table)
            rows.pop(ktuple, None)

    def update(
        self,
        table: str,
        key: Dict[str, Any],
        fields: Dict[str, Any],
        condition: Optional[Condition] = None,
    ) -> None:
        if not fields:
            raise ValueError("update requires at least one field")
        with self._lock:
            rows = self._table(table)
            ktuple = self._key_tuple(table, key)
            current = rows.get(ktuple)
            self._check(condition, current, table)
            updated = dict(current) if current is not None else dict(key)
            updated.update(copy.deepcopy(fields))
            rows[ktuple] = updated

    def scan_all(self, table: str, condition: Optional[Condition] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(item)
                for item in self._table(table).values()
                if condition is None or condition.matches(item)
            ]

    def scan_page(
        self,
        table: str,
        condition: Optional[Condition],
        limit: int,
        start_key: Optional[Dict[str, Any]] = None,
    ) -> ScanPage:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        with self._lock:
            rows = list(self._table(table).items())
            start = 0
            if start_key:
                positions = {ktuple: index for index, (ktuple, _item) in enumerate(rows)}
                try:
                    start = positions[self._key_tuple(table, start_key)] + 1
                except (KeyError, TypeError):
                    raise ValidationError("Invalid pagination token.")
            collected: List[Dict[str, Any]] = []
            for index in range(start, len(rows)):
                item = rows[index][1]
                if condition is not None and not condition.matches(item):
                    continue
                collected.append(copy.deepcopy(item))
                if len(collected) == limit:
                    exhausted = index == len(rows) - 1
                    next_key = None if exhausted else self.key_of(table, collected[-1])
                    return ScanPage(collected, next_key)
            return ScanPage(collected, None)
