"""authorization.py — Role and ownership rules gating every mutation.

Each rule is a pure function of (principal, target record) for one operation.
A denial raises ForbiddenError; rules never silently no-op.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from compass_events.config import ROLE_ADMIN, ROLE_ORGANIZER, ROLE_PARTICIPANT
from compass_events.errors import ForbiddenError

__all__ = [
    "Principal",
    "authorize_event_owner",
    "authorize_event_write",
    "authorize_registration_cancel",
    "authorize_registration_create",
    "authorize_user_access",
    "scope_user_listing",
]


@dataclass(frozen=True)
class Principal:
    """The authenticated actor."""
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def authorize_user_access(principal: Principal, target_user_id: str) -> None:
    """Read/update/delete of a user record: self, or admin."""
    if principal.is_admin or principal.id == target_user_id:
        return
    raise ForbiddenError("You can only access your own account unless you are an administrator.")


def scope_user_listing(principal: Principal, requested_role: Optional[str]) -> Optional[str]:
    """Return the role filter actually applied to a user listing.

    Admins get their requested filter (or none). Organizers only ever see
    participants, whatever they asked for. Everyone else is denied.
    """
    if principal.is_admin:
        return requested_role or None
    if principal.role == ROLE_ORGANIZER:
        return ROLE_PARTICIPANT
    raise ForbiddenError("Only administrators and organizers can list users.")


def authorize_event_write(principal: Principal) -> None:
    """Creating or editing events needs the organizer or admin role."""
    if principal.role in (ROLE_ADMIN, ROLE_ORGANIZER):
        return
    raise ForbiddenError("Only organizers and administrators can manage events.")


def authorize_event_owner(principal: Principal, event: Dict[str, Any]) -> None:
    """Update/delete of an existing event: its organizer, or admin."""
    authorize_event_write(principal)
    if principal.is_admin or event.get("organizer_id") == principal.id:
        return
    raise ForbiddenError("You are not the organizer of this event or an administrator.")


def authorize_registration_create(principal: Principal) -> None:
    if principal.role in (ROLE_PARTICIPANT, ROLE_ORGANIZER):
        return
    raise ForbiddenError("Only participants and organizers can register for events.")


def authorize_registration_cancel(principal: Principal, registration: Dict[str, Any]) -> None:
    """Only the participant who registered may cancel."""
    if registration.get("participant_id") == principal.id:
        return
    raise ForbiddenError("You can only cancel your own registrations.")
