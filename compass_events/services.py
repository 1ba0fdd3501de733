"""services.py — Operation control flow: authorize -> repository -> notify.

Services are the entry points an outer surface (HTTP handler, CLI, worker)
calls with an authenticated Principal. Every operation:

    1. validates input shape (ValidationError)
    2. evaluates the authorization rule for the operation (ForbiddenError)
    3. performs the repository operation (Conflict/NotFound propagate as-is)
    4. dispatches notifications, fire-and-forget

A failed notification is logged and never undoes step 3.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Optional

from compass_events.authorization import (
    Principal,
    authorize_event_owner,
    authorize_event_write,
    authorize_registration_cancel,
    authorize_registration_create,
    authorize_user_access,
    scope_user_listing,
)
from compass_events.config import APP_URL, EMAIL_VERIFICATION_ENABLED, ROLE_ADMIN
from compass_events.errors import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from compass_events.identity import TokenError, decode_token, issue_token, principal_from_claims, verify_password
from compass_events.notifications import (
    EmailDispatcher,
    EmailMessage,
    account_deleted_email,
    registration_cancelled_email,
    registration_confirmed_email,
    verification_email,
)
from compass_events.pagination import Page, parse_limit
from compass_events.repositories import EventRepository, RegistrationRepository, UserRepository
from compass_events.storage import ImageStorage, ImageUpload
from compass_events.validation import (
    optional_text,
    reject_unknown,
    require_text,
    validate_email,
    validate_event_date,
    validate_event_name,
    validate_event_status,
    validate_password,
    validate_phone,
    validate_role,
)

__all__ = ["EventService", "RegistrationService", "UserService"]

logger = logging.getLogger(__name__)


def _require_storage(images: Optional[ImageStorage]) -> ImageStorage:
    if images is None:
        raise ValidationError("Image uploads are not enabled.")
    return images


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserService:
    _REGISTER_FIELDS = ("name", "email", "password", "phone", "role")
    _UPDATE_FIELDS = ("name", "email", "password", "phone")

    def __init__(
        self,
        users: UserRepository,
        mailer: EmailDispatcher,
        images: Optional[ImageStorage] = None,
        *,
        app_url: str = APP_URL,
        email_verification: Optional[bool] = None,
        jwt_secret: Optional[str] = None,
        jwt_ttl_seconds: Optional[int] = None,
    ) -> None:
        self._users = users
        self._mailer = mailer
        self._images = images
        self._app_url = app_url.rstrip("/")
        self._email_verification = (
            EMAIL_VERIFICATION_ENABLED if email_verification is None else email_verification
        )
        self._jwt_secret = jwt_secret
        self._jwt_ttl_seconds = jwt_ttl_seconds

    def register(
        self,
        data: Dict[str, Any],
        *,
        image: Optional[ImageUpload] = None,
        actor: Optional[Principal] = None,
    ) -> Dict[str, Any]:
        """Create an account. Admin accounts can only be created by an admin."""
        reject_unknown(data, self._REGISTER_FIELDS)
        role = validate_role(data.get("role"))
        if role == ROLE_ADMIN and not (actor and actor.is_admin):
            raise ForbiddenError("Only administrators can create administrator accounts.")

        user = self._users.create(
            name=require_text(data, "name"),
            email=validate_email(require_text(data, "email")),
            password=validate_password(require_text(data, "password")),
            phone=validate_phone(require_text(data, "phone")),
            role=role,
            is_active=not self._email_verification,
            actor_id=actor.id if actor else None,
        )
        if image is not None:
            url = _require_storage(self._images).upload_image(
                image.data, user["id"], filename=image.filename, content_type=image.content_type,
            )
            user = self._users.update(
                user["id"], {"profile_image_url": url}, actor_id=actor.id if actor else None,
            )

        if self._email_verification:
            link = f"{self._app_url}/auth/verify-email?token={user['id']}"
            self._mailer.dispatch(user["email"], verification_email(user["name"], link))
        else:
            logger.info("Email verification disabled; user %s is active on creation", user["id"])
        return user

    def get(self, principal: Principal, user_id: str) -> Dict[str, Any]:
        authorize_user_access(principal, user_id)
        user = self._users.find_by_id(user_id)
        if user is None:
            raise NotFoundError(f'User with ID "{user_id}" not found.')
        return user

    def update(self, principal: Principal, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        authorize_user_access(principal, user_id)
        reject_unknown(changes, self._UPDATE_FIELDS)
        email = optional_text(changes, "email")
        password = optional_text(changes, "password")
        phone = optional_text(changes, "phone")
        fields = {
            "name": optional_text(changes, "name"),
            "email": validate_email(email) if email else None,
            "password": validate_password(password) if password else None,
            "phone": validate_phone(phone) if phone else None,
        }
        return self._users.update(
            user_id, {k: v for k, v in fields.items() if v is not None}, actor_id=principal.id,
        )

    def delete(self, principal: Principal, user_id: str) -> Dict[str, Any]:
        authorize_user_access(principal, user_id)
        user = self._users.soft_delete(user_id, actor_id=principal.id)
        self._mailer.dispatch(user["email"], account_deleted_email(user["name"]))
        return {"message": "User deleted", "id": user_id}

    def list(
        self,
        principal: Principal,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[str] = None,
        limit: Any = None,
        token: Optional[str] = None,
    ) -> Page:
        requested_role = validate_role(role) if role else None
        effective_role = scope_user_listing(principal, requested_role)
        return self._users.list(
            name=name or None,
            email=email or None,
            role=effective_role,
            limit=parse_limit(limit),
            token=token,
        )

    def upload_profile_image(self, principal: Principal, user_id: str, image: ImageUpload) -> Dict[str, Any]:
        authorize_user_access(principal, user_id)
        if self._users.find_by_id(user_id) is None:
            raise NotFoundError(f'User with ID "{user_id}" not found.')
        url = _require_storage(self._images).upload_image(
            image.data, user_id, filename=image.filename, content_type=image.content_type,
        )
        return self._users.update(user_id, {"profile_image_url": url}, actor_id=principal.id)

    def verify_email(self, token: str) -> Dict[str, str]:
        """The verification token is the user id sent in the verification link."""
        user = self._users.find_by_id(token) if token else None
        if user is None:
            raise UnauthorizedError("Invalid or expired verification token.")
        if user.get("is_active"):
            return {"message": "Email already verified."}
        self._users.activate(user["id"])
        return {"message": "Email successfully verified. You can now log in."}

    def login(self, email: str, password: str) -> Dict[str, str]:
        user = self._users.find_by_email(email, include_password=True)
        if user is None or not verify_password(password, user.get("password")):
            raise UnauthorizedError("Invalid email or password")
        if not user.get("is_active"):
            raise ForbiddenError("Email address has not been verified.")
        try:
            token = issue_token(user, secret=self._jwt_secret, ttl_seconds=self._jwt_ttl_seconds)
        except TokenError as exc:
            logger.error("Cannot issue access token: %s", exc)
            raise
        return {"access_token": token}

    def resolve_principal(self, access_token: str) -> Principal:
        """Verify the token and re-read the user, so deleted accounts lose access at once."""
        try:
            claims = decode_token(access_token, secret=self._jwt_secret)
            principal = principal_from_claims(claims)
        except TokenError as exc:
            raise UnauthorizedError(str(exc)) from exc
        user = self._users.find_by_id(principal.id)
        if user is None:
            raise UnauthorizedError("Account no longer exists.")
        return Principal(id=user["id"], role=user["role"])


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventService:
    _CREATE_FIELDS = ("name", "description", "date", "organizer_id")
    _UPDATE_FIELDS = ("name", "description", "date", "organizer_id")

    def __init__(self, events: EventRepository, images: Optional[ImageStorage] = None) -> None:
        self._events = events
        self._images = images

    def create(
        self,
        principal: Principal,
        data: Dict[str, Any],
        *,
        image: Optional[ImageUpload] = None,
    ) -> Dict[str, Any]:
        authorize_event_write(principal)
        reject_unknown(data, self._CREATE_FIELDS)
        organizer_id = optional_text(data, "organizer_id") or principal.id
        if organizer_id != principal.id and not principal.is_admin:
            raise ForbiddenError("Only administrators can create events for another organizer.")

        event = self._events.create(
            name=validate_event_name(require_text(data, "name")),
            description=require_text(data, "description"),
            date=validate_event_date(require_text(data, "date")),
            organizer_id=organizer_id,
            actor_id=principal.id,
        )
        if image is not None:
            url = _require_storage(self._images).upload_image(
                image.data, event["id"], filename=image.filename,
                content_type=image.content_type, path_prefix="events",
            )
            event = self._events.update(event["id"], {"image_url": url}, actor_id=principal.id)
        return event

    def get(self, event_id: str) -> Dict[str, Any]:
        return self._events.get(event_id)

    def update(self, principal: Principal, event_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        reject_unknown(changes, self._UPDATE_FIELDS)
        event = self._events.get(event_id)
        authorize_event_owner(principal, event)

        name = optional_text(changes, "name")
        date = optional_text(changes, "date")
        organizer_id = optional_text(changes, "organizer_id")
        if organizer_id and organizer_id != event.get("organizer_id") and not principal.is_admin:
            raise ForbiddenError("Only administrators can reassign an event's organizer.")
        fields = {
            "name": validate_event_name(name) if name else None,
            "description": optional_text(changes, "description"),
            "date": validate_event_date(date) if date else None,
            "organizer_id": organizer_id,
        }
        return self._events.update(
            event_id, {k: v for k, v in fields.items() if v is not None}, actor_id=principal.id,
        )

    def delete(self, principal: Principal, event_id: str) -> Dict[str, Any]:
        event = self._events.get(event_id)
        authorize_event_owner(principal, event)
        self._events.soft_delete(event_id, actor_id=principal.id)
        return {"message": "Event deleted", "id": event_id}

    def list(
        self,
        *,
        name: Optional[str] = None,
        date: Optional[str] = None,
        status: Optional[str] = None,
        limit: Any = None,
        token: Optional[str] = None,
    ) -> Page:
        return self._events.list(
            name=name or None,
            date=validate_event_date(date) if date else None,
            status=validate_event_status(status) if status else None,
            limit=parse_limit(limit),
            token=token,
        )

    def upload_image(self, principal: Principal, event_id: str, image: ImageUpload) -> Dict[str, Any]:
        event = self._events.get(event_id)
        authorize_event_owner(principal, event)
        url = _require_storage(self._images).upload_image(
            image.data, event_id, filename=image.filename,
            content_type=image.content_type, path_prefix="events",
        )
        return self._events.update(event_id, {"image_url": url}, actor_id=principal.id)


# ---------------------------------------------------------------------------
# Registrations
# ---------------------------------------------------------------------------


class RegistrationService:
    def __init__(
        self,
        registrations: RegistrationRepository,
        events: EventRepository,
        users: UserRepository,
        mailer: EmailDispatcher,
    ) -> None:
        self._registrations = registrations
        self._events = events
        self._users = users
        self._mailer = mailer

    def _notify_participant(self, participant_id: str, build) -> None:
        user = self._users.find_by_id(participant_id)
        if user is None:
            logger.warning("[NOTIFY] Participant %s not found; notification skipped", participant_id)
            return
        message: EmailMessage = build(user)
        self._mailer.dispatch(user["email"], message)

    def create(
        self,
        principal: Principal,
        event_id: str,
        *,
        now: Optional[dt.datetime] = None,
    ) -> Dict[str, Any]:
        authorize_registration_create(principal)
        if not event_id:
            raise ValidationError("event_id is required.")
        registration = self._registrations.create(event_id, principal.id, now=now)

        event = self._events.find_any(event_id) or {}
        self._notify_participant(
            principal.id,
            lambda user: registration_confirmed_email(user["name"], event.get("name", ""), event.get("date", "")),
        )
        return registration

    def list(
        self,
        principal: Principal,
        *,
        event_id: Optional[str] = None,
        limit: Any = None,
        token: Optional[str] = None,
    ) -> Page:
        """The caller's own active registrations."""
        return self._registrations.list_by_participant(
            principal.id,
            event_id=event_id or None,
            limit=parse_limit(limit),
            token=token,
        )

    def cancel(self, principal: Principal, registration_id: str) -> Dict[str, Any]:
        registration = self._registrations.get(registration_id)
        authorize_registration_cancel(principal, registration)
        self._registrations.soft_delete(registration_id, actor_id=principal.id)

        event = self._events.find_any(registration.get("event_id", "")) or {}
        self._notify_participant(
            registration["participant_id"],
            lambda user: registration_cancelled_email(user["name"], event.get("name", "")),
        )
        return {"message": "Registration cancelled", "id": registration_id}
