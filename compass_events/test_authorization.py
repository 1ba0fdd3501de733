"""test_authorization.py — Role and ownership rule tests."""

from __future__ import annotations

import unittest

from compass_events.authorization import (
    Principal,
    authorize_event_owner,
    authorize_event_write,
    authorize_registration_cancel,
    authorize_registration_create,
    authorize_user_access,
    scope_user_listing,
)
from compass_events.errors import ForbiddenError

ADMIN = Principal(id="admin-1", role="admin")
ORGANIZER = Principal(id="org-1", role="organizer")
PARTICIPANT = Principal(id="part-1", role="participant")


class UserAccessTests(unittest.TestCase):
    def test_self_and_admin_allowed(self):
        authorize_user_access(PARTICIPANT, "part-1")
        authorize_user_access(ADMIN, "part-1")

    def test_other_user_denied(self):
        with self.assertRaises(ForbiddenError):
            authorize_user_access(ORGANIZER, "part-1")

    def test_listing_scope(self):
        self.assertIsNone(scope_user_listing(ADMIN, None))
        self.assertEqual(scope_user_listing(ADMIN, "organizer"), "organizer")
        # Organizers only ever see participants, whatever they ask for.
        self.assertEqual(scope_user_listing(ORGANIZER, "admin"), "participant")
        self.assertEqual(scope_user_listing(ORGANIZER, None), "participant")
        with self.assertRaises(ForbiddenError):
            scope_user_listing(PARTICIPANT, None)


class EventRuleTests(unittest.TestCase):
    def test_write_roles(self):
        authorize_event_write(ADMIN)
        authorize_event_write(ORGANIZER)
        with self.assertRaises(ForbiddenError):
            authorize_event_write(PARTICIPANT)

    def test_owner_rule(self):
        event = {"id": "e1", "organizer_id": "org-1"}
        authorize_event_owner(ORGANIZER, event)
        authorize_event_owner(ADMIN, event)
        with self.assertRaises(ForbiddenError):
            authorize_event_owner(Principal(id="org-2", role="organizer"), event)
        with self.assertRaises(ForbiddenError):
            authorize_event_owner(Principal(id="org-1", role="participant"), event)


class RegistrationRuleTests(unittest.TestCase):
    def test_create_roles(self):
        authorize_registration_create(PARTICIPANT)
        authorize_registration_create(ORGANIZER)
        with self.assertRaises(ForbiddenError):
            authorize_registration_create(ADMIN)

    def test_cancel_only_by_owner(self):
        registration = {"id": "r1", "participant_id": "part-1"}
        authorize_registration_cancel(PARTICIPANT, registration)
        with self.assertRaises(ForbiddenError):
            authorize_registration_cancel(ADMIN, registration)


if __name__ == "__main__":
    unittest.main()
