"""repositories.py — Users, Events and Registrations persistence.

Rules enforced here, for every entity:
    - Soft delete only: rows get deleted_at (and a status flag) and are never
      removed. Soft-deleted rows are invisible to find_by_* and default listings.
    - Field-granular updates: only values that differ from the stored record
      enter the SET clause. Nothing changed -> no write, updated_at untouched.
    - Writes against existing rows are conditional on the row still being
      visible, so a concurrent soft delete turns into NotFoundError instead of
      resurrecting a partial item.

Uniqueness (user email, active event name) is a write-if-absent guard item in
the unique-keys table, claimed before the entity write and released when the
entity is soft-deleted or the unique value changes.
"""
from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Callable, Dict, Iterable, Optional

from compass_events.config import (
    EVENT_STATUS_ACTIVE,
    EVENT_STATUS_INACTIVE,
    EVENTS_TABLE,
    REGISTRATIONS_TABLE,
    ROLES,
    UNIQUE_KEYS_TABLE,
    USERS_TABLE,
)
from compass_events.errors import ConditionalCheckFailed, ConflictError, NotFoundError, ValidationError
from compass_events.expressions import (
    AttributeExists,
    AttributeNotExists,
    Condition,
    Equals,
    event_list_condition,
    not_deleted,
    registration_list_condition,
    user_list_condition,
)
from compass_events.identity import hash_password
from compass_events.pagination import Page, decode_token, encode_token
from compass_events.serialization import _emit_structured_observability, _now_z
from compass_events.store import TableStore

__all__ = [
    "EventRepository",
    "RegistrationRepository",
    "UniqueKeyGuard",
    "UserRepository",
    "parse_event_date",
]

logger = logging.getLogger(__name__)

_EMAIL_SCOPE = "user-email"
_EVENT_NAME_SCOPE = "event-name"


def _new_id() -> str:
    return str(uuid.uuid4())


def parse_event_date(value: Any) -> dt.datetime:
    """Parse an ISO-8601 date/datetime into an aware UTC datetime (naive input is taken as UTC)."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Event date must be an ISO-8601 string.")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid event date: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


# ---------------------------------------------------------------------------
# Uniqueness guard
# ---------------------------------------------------------------------------


class UniqueKeyGuard:
    """Write-if-absent claims on "<scope>#<value>" keys."""

    def __init__(self, store: TableStore, table: str = UNIQUE_KEYS_TABLE) -> None:
        self._store = store
        self._table = table

    @staticmethod
    def _key(scope: str, value: str) -> Dict[str, str]:
        return {"key": f"{scope}#{value}"}

    def owner_of(self, scope: str, value: str) -> Optional[str]:
        item = self._store.get(self._table, self._key(scope, value))
        return item.get("owner_id") if item else None

    def claim(self, scope: str, value: str, owner_id: str, conflict_message: str) -> None:
        item = {
            **self._key(scope, value),
            "scope": scope,
            "owner_id": owner_id,
            "created_at": _now_z(),
        }
        try:
            self._store.put(self._table, item, condition=AttributeNotExists("key"))
        except ConditionalCheckFailed:
            raise ConflictError(conflict_message)

    def release(self, scope: str, value: str, owner_id: str) -> None:
        """Drop the claim if (and only if) `owner_id` still holds it."""
        try:
            self._store.delete(self._table, self._key(scope, value), condition=Equals("owner_id", owner_id))
        except ConditionalCheckFailed:
            logger.warning("Unique key %s#%s not held by %s; left in place", scope, value, owner_id)


# ---------------------------------------------------------------------------
# Shared repository mechanics
# ---------------------------------------------------------------------------


class _EntityRepository:
    component = "entity"
    entity_label = "Record"

    def __init__(self, store: TableStore, table: str) -> None:
        self._store = store
        self._table = table

    @staticmethod
    def _visible() -> Condition:
        return AttributeExists("id") & not_deleted()

    def _get_visible(self, record_id: str) -> Optional[Dict[str, Any]]:
        if not record_id:
            return None
        item = self._store.get(self._table, {"id": record_id})
        if item is None or "deleted_at" in item:
            return None
        return item

    def _require_visible(self, record_id: str) -> Dict[str, Any]:
        item = self._get_visible(record_id)
        if item is None:
            raise NotFoundError(f'{self.entity_label} with ID "{record_id}" not found.')
        return item

    def _insert(self, item: Dict[str, Any]) -> None:
        self._store.put(self._table, item, condition=AttributeNotExists("id"))

    def _write_visible(self, record_id: str, fields: Dict[str, Any]) -> None:
        try:
            self._store.update(self._table, {"id": record_id}, fields, condition=self._visible())
        except ConditionalCheckFailed:
            raise NotFoundError(f'{self.entity_label} with ID "{record_id}" not found.')

    @staticmethod
    def _changed_fields(
        current: Dict[str, Any],
        changes: Dict[str, Any],
        allowed: Iterable[str],
    ) -> Dict[str, Any]:
        allowed_set = set(allowed)
        unknown = sorted(set(changes) - allowed_set)
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(unknown)}")
        return {
            field: value
            for field, value in changes.items()
            if value is not None and current.get(field) != value
        }

    def _start_key(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """Decode a continuation token; it must carry exactly this table's key attributes."""
        key = decode_token(token)
        if key is None:
            return None
        expected = set(self._store.key_attrs(self._table))
        if set(key) != expected or not all(isinstance(v, str) and v for v in key.values()):
            raise ValidationError("Invalid pagination token.")
        return key

    def _page(self, condition: Condition, limit: int, token: Optional[str], shape: Callable) -> Page:
        page = self._store.scan_page(self._table, condition, limit, self._start_key(token))
        return Page(items=[shape(item) for item in page.items], limit=limit, next_token=encode_token(page.last_key))

    def _observe(self, event: str, entity_id: str, actor_id: Optional[str] = None, **extra: Any) -> None:
        _emit_structured_observability(
            component=self.component,
            event=event,
            entity_id=entity_id,
            actor_id=actor_id,
            extra=extra or None,
        )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def _public_user(item: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(item)
    out.pop("password", None)
    return out


class UserRepository(_EntityRepository):
    component = "users"
    entity_label = "User"

    _UPDATABLE = ("name", "email", "phone", "profile_image_url", "password")

    def __init__(
        self,
        store: TableStore,
        guard: UniqueKeyGuard,
        table: str = USERS_TABLE,
        password_hasher: Callable[[str], str] = hash_password,
    ) -> None:
        super().__init__(store, table)
        self._guard = guard
        self._hash = password_hasher

    def create(
        self,
        *,
        name: str,
        email: str,
        password: str,
        phone: str,
        role: str,
        profile_image_url: str = "",
        is_active: bool = True,
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if role not in ROLES:
            raise ValidationError(f"Invalid role: {role!r}")
        user_id = _new_id()
        # Everything that can fail before the insert runs ahead of the claim.
        hashed = self._hash(password)
        now = _now_z()
        self._guard.claim(_EMAIL_SCOPE, email, user_id, "Email already exists")

        item = {
            "id": user_id,
            "name": name,
            "email": email,
            "password": hashed,
            "phone": phone,
            "profile_image_url": profile_image_url or "",
            "role": role,
            "is_active": bool(is_active),
            "created_at": now,
            "updated_at": now,
        }
        try:
            self._insert(item)
        except Exception:
            self._guard.release(_EMAIL_SCOPE, email, user_id)
            raise
        self._observe("created", user_id, actor_id, role=role)
        return _public_user(item)

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        item = self._get_visible(user_id)
        return _public_user(item) if item else None

    def find_by_email(self, email: str, *, include_password: bool = False) -> Optional[Dict[str, Any]]:
        if not email:
            return None
        matches = self._store.scan_all(self._table, Equals("email", email) & not_deleted())
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning("Email %s matched %d active users; returning first", email, len(matches))
        return matches[0] if include_password else _public_user(matches[0])

    def update(self, user_id: str, changes: Dict[str, Any], *, actor_id: Optional[str] = None) -> Dict[str, Any]:
        current = self._require_visible(user_id)
        password = changes.get("password")
        fields = self._changed_fields(current, {k: v for k, v in changes.items() if k != "password"}, self._UPDATABLE)
        if password:
            fields["password"] = self._hash(password)
        if not fields:
            return _public_user(current)

        new_email = fields.get("email")
        if new_email:
            self._guard.claim(_EMAIL_SCOPE, new_email, user_id, "Email already in use by another user.")

        fields["updated_at"] = _now_z()
        try:
            self._write_visible(user_id, fields)
        except Exception:
            if new_email:
                self._guard.release(_EMAIL_SCOPE, new_email, user_id)
            raise
        if new_email:
            self._guard.release(_EMAIL_SCOPE, current["email"], user_id)

        self._observe("updated", user_id, actor_id, fields=sorted(k for k in fields if k != "updated_at"))
        return _public_user({**current, **fields})

    def activate(self, user_id: str) -> Dict[str, Any]:
        """Email verification. The verifying user is the actor."""
        current = self._require_visible(user_id)
        if current.get("is_active"):
            raise ValidationError("User is already active.")
        fields = {"is_active": True, "updated_at": _now_z()}
        self._write_visible(user_id, fields)
        self._observe("activated", user_id, user_id)
        return _public_user({**current, **fields})

    def soft_delete(self, user_id: str, *, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """Mark deleted + inactive and free the email. Returns the user as it was."""
        current = self._require_visible(user_id)
        self._write_visible(user_id, {"deleted_at": _now_z(), "is_active": False})
        self._guard.release(_EMAIL_SCOPE, current["email"], user_id)
        self._observe("deleted", user_id, actor_id)
        return _public_user(current)

    def list(
        self,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[str] = None,
        limit: int,
        token: Optional[str] = None,
    ) -> Page:
        condition = user_list_condition(name=name, email=email, role=role)
        return self._page(condition, limit, token, _public_user)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventRepository(_EntityRepository):
    component = "events"
    entity_label = "Event"

    _UPDATABLE = ("name", "description", "date", "image_url", "organizer_id")

    def __init__(self, store: TableStore, guard: UniqueKeyGuard, table: str = EVENTS_TABLE) -> None:
        super().__init__(store, table)
        self._guard = guard

    def create(
        self,
        *,
        name: str,
        description: str,
        date: str,
        organizer_id: str,
        image_url: str = "",
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        event_id = _new_id()
        self._guard.claim(_EVENT_NAME_SCOPE, name, event_id, "Event name already exists")

        now = _now_z()
        item = {
            "id": event_id,
            "name": name,
            "description": description,
            "date": date,
            "image_url": image_url or "",
            "organizer_id": organizer_id,
            "status": EVENT_STATUS_ACTIVE,
            "created_at": now,
            "updated_at": now,
        }
        try:
            self._insert(item)
        except Exception:
            self._guard.release(_EVENT_NAME_SCOPE, name, event_id)
            raise
        self._observe("created", event_id, actor_id, organizer_id=organizer_id)
        return item

    def find_by_id(self, event_id: str) -> Optional[Dict[str, Any]]:
        return self._get_visible(event_id)

    def get(self, event_id: str) -> Dict[str, Any]:
        return self._require_visible(event_id)

    def find_any(self, event_id: str) -> Optional[Dict[str, Any]]:
        """Raw lookup, soft-deleted events included."""
        if not event_id:
            return None
        return self._store.get(self._table, {"id": event_id})

    def find_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """Active, non-deleted event with exactly this name."""
        if not name:
            return None
        condition = Equals("name", name) & Equals("status", EVENT_STATUS_ACTIVE) & not_deleted()
        matches = self._store.scan_all(self._table, condition)
        return matches[0] if matches else None

    def update(self, event_id: str, changes: Dict[str, Any], *, actor_id: Optional[str] = None) -> Dict[str, Any]:
        current = self._require_visible(event_id)
        fields = self._changed_fields(current, changes, self._UPDATABLE)
        if not fields:
            return current

        new_name = fields.get("name")
        if new_name:
            self._guard.claim(_EVENT_NAME_SCOPE, new_name, event_id, "Event name already exists")

        fields["updated_at"] = _now_z()
        try:
            self._write_visible(event_id, fields)
        except Exception:
            if new_name:
                self._guard.release(_EVENT_NAME_SCOPE, new_name, event_id)
            raise
        if new_name:
            self._guard.release(_EVENT_NAME_SCOPE, current["name"], event_id)

        self._observe("updated", event_id, actor_id, fields=sorted(k for k in fields if k != "updated_at"))
        return {**current, **fields}

    def soft_delete(self, event_id: str, *, actor_id: Optional[str] = None) -> Dict[str, Any]:
        current = self._require_visible(event_id)
        now = _now_z()
        fields = {"status": EVENT_STATUS_INACTIVE, "deleted_at": now, "updated_at": now}
        self._write_visible(event_id, fields)
        self._guard.release(_EVENT_NAME_SCOPE, current["name"], event_id)
        self._observe("deleted", event_id, actor_id)
        return {**current, **fields}

    def list(
        self,
        *,
        name: Optional[str] = None,
        date: Optional[str] = None,
        status: Optional[str] = None,
        limit: int,
        token: Optional[str] = None,
    ) -> Page:
        condition = event_list_condition(name=name, date=date, status=status)
        return self._page(condition, limit, token, dict)


# ---------------------------------------------------------------------------
# Registrations
# ---------------------------------------------------------------------------


class RegistrationRepository(_EntityRepository):
    component = "registrations"
    entity_label = "Registration"

    def __init__(self, store: TableStore, events: EventRepository, table: str = REGISTRATIONS_TABLE) -> None:
        super().__init__(store, table)
        self._events = events

    def create(
        self,
        event_id: str,
        participant_id: str,
        *,
        now: Optional[dt.datetime] = None,
    ) -> Dict[str, Any]:
        """Register against an active event that has not happened yet."""
        event = self._events.find_any(event_id)
        if event is None:
            raise NotFoundError(f'Event with ID "{event_id}" not found.')
        if event.get("status") != EVENT_STATUS_ACTIVE or "deleted_at" in event:
            raise ValidationError("Invalid or inactive event")

        current_time = now or dt.datetime.now(dt.timezone.utc)
        if parse_event_date(event.get("date")) < current_time:
            raise ValidationError("Event has already occurred")

        item = {
            "id": _new_id(),
            "event_id": event_id,
            "participant_id": participant_id,
            "created_at": _now_z(),
        }
        self._insert(item)
        self._observe("created", item["id"], participant_id, event_id=event_id)
        return item

    def find_by_id(self, registration_id: str) -> Optional[Dict[str, Any]]:
        return self._get_visible(registration_id)

    def get(self, registration_id: str) -> Dict[str, Any]:
        return self._require_visible(registration_id)

    def soft_delete(self, registration_id: str, *, actor_id: Optional[str] = None) -> Dict[str, Any]:
        current = self._require_visible(registration_id)
        fields = {"deleted_at": _now_z()}
        self._write_visible(registration_id, fields)
        self._observe("cancelled", registration_id, actor_id, event_id=current.get("event_id"))
        return {**current, **fields}

    def list_by_participant(
        self,
        participant_id: str,
        *,
        event_id: Optional[str] = None,
        limit: int,
        token: Optional[str] = None,
    ) -> Page:
        condition = registration_list_condition(participant_id=participant_id, event_id=event_id)
        return self._page(condition, limit, token, dict)
