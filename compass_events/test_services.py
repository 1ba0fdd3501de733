"""test_services.py — End-to-end service flows on an in-memory AppContext.

SES and S3 are MagicMock clients; everything else is the real wiring.
"""

from __future__ import annotations

import json
import unittest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from compass_events.app import AppContext
from compass_events.authorization import Principal
from compass_events.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from compass_events.notifications import EmailDispatcher
from compass_events.storage import ImageStorage, ImageUpload

SECRET = "service-test-secret-with-enough-length"
FUTURE = "2999-01-01T10:00:00.000Z"
PAST = "2000-01-01T10:00:00.000Z"


def _principal(user):
    return Principal(id=user["id"], role=user["role"])


class _ServiceTestCase(unittest.TestCase):
    email_verification = False

    def setUp(self):
        self.ses = MagicMock()
        self.ses.send_email.return_value = {"MessageId": "m-1"}
        self.s3 = MagicMock()
        self.ctx = AppContext.in_memory(
            mailer=EmailDispatcher(self.ses, "noreply@x.com"),
            images=ImageStorage(self.s3, "bucket", "us-east-1"),
            email_verification=self.email_verification,
            app_url="http://app.test/",
            jwt_secret=SECRET,
        )
        self.users = self.ctx.user_service
        self.events = self.ctx.event_service
        self.registrations = self.ctx.registration_service
        self.admin = _principal(self.ctx.users.create(
            name="Admin", email="admin@x.com", password="AdminPass1", phone="0000000000", role="admin",
        ))

    def tearDown(self):
        self.ctx.close()

    def _register(self, email="ann@x.com", role="participant", **overrides):
        data = {"name": "Ann", "email": email, "password": "Secret123", "phone": "(11) 98765-4321", "role": role}
        data.update(overrides)
        return self.users.register(data)

    def _sent_subjects(self):
        return [c.kwargs["Message"]["Subject"]["Data"] for c in self.ses.send_email.call_args_list]

    def _observed(self, logs, component):
        prefix = "INFO:compass_events.serialization:[OBSERVABILITY] "
        payloads = [json.loads(line[len(prefix):]) for line in logs.output if line.startswith(prefix)]
        return [(p["event"], p["actor_id"]) for p in payloads if p["component"] == component]


class UserServiceVerificationTests(_ServiceTestCase):
    email_verification = True

    def test_register_verify_login(self):
        user = self._register()
        self.assertFalse(user["is_active"])
        html = self.ses.send_email.call_args.kwargs["Message"]["Body"]["Html"]["Data"]
        self.assertIn(f"http://app.test/auth/verify-email?token={user['id']}", html)

        with self.assertRaises(ForbiddenError):
            self.users.login("ann@x.com", "Secret123")

        self.assertEqual(self.users.verify_email(user["id"])["message"], "Email successfully verified. You can now log in.")
        self.assertEqual(self.users.verify_email(user["id"])["message"], "Email already verified.")

        token = self.users.login("ann@x.com", "Secret123")["access_token"]
        principal = self.users.resolve_principal(token)
        self.assertEqual(principal, Principal(id=user["id"], role="participant"))

    def test_verify_unknown_token(self):
        with self.assertRaises(UnauthorizedError):
            self.users.verify_email("nope")


class UserServiceTests(_ServiceTestCase):
    def test_register_validates_before_writing(self):
        with self.assertRaises(ValidationError):
            self._register(phone="12")
        with self.assertRaises(ValidationError):
            self._register(password="short")
        with self.assertRaises(ValidationError):
            self._register(email="not-an-email")
        with self.assertRaises(ValidationError):
            self._register(nickname="x")
        self.assertIsNone(self.ctx.users.find_by_email("ann@x.com"))

    def test_role_is_normalised(self):
        self.assertEqual(self._register(role="Organizer")["role"], "organizer")

    def test_admin_accounts_need_admin_actor(self):
        with self.assertRaises(ForbiddenError):
            self._register(role="admin")
        data = {"name": "Root", "email": "root@x.com", "password": "Secret123",
                "phone": "(11) 98765-4321", "role": "admin"}
        self.assertEqual(self.users.register(data, actor=self.admin)["role"], "admin")

    def test_register_duplicate_email(self):
        self._register()
        with self.assertRaises(ConflictError):
            self._register(name="Other")

    def test_login_failures(self):
        self._register()
        with self.assertRaises(UnauthorizedError):
            self.users.login("ann@x.com", "Wrong1234")
        with self.assertRaises(UnauthorizedError):
            self.users.login("nobody@x.com", "Secret123")

    def test_get_and_update_own_record_only(self):
        ann = self._register()
        bob = self._register(email="bob@x.com", name="Bob")
        me = _principal(ann)
        self.assertEqual(self.users.get(me, ann["id"])["email"], "ann@x.com")
        with self.assertRaises(ForbiddenError):
            self.users.get(me, bob["id"])
        with self.assertRaises(ForbiddenError):
            self.users.update(me, bob["id"], {"name": "Hacked"})
        self.assertEqual(self.users.update(me, ann["id"], {"name": "Ann B"})["name"], "Ann B")
        self.assertEqual(self.users.update(self.admin, bob["id"], {"name": "Robert"})["name"], "Robert")
        with self.assertRaises(ValidationError):
            self.users.update(me, ann["id"], {"role": "admin"})

    def test_delete_notifies_and_revokes_access(self):
        ann = self._register()
        token = self.users.login("ann@x.com", "Secret123")["access_token"]
        self.ses.send_email.side_effect = ClientError({"Error": {"Code": "Throttling"}}, "SendEmail")

        result = self.users.delete(_principal(ann), ann["id"])
        self.assertEqual(result["id"], ann["id"])
        self.assertIn("Your Account Has Been Deleted", self._sent_subjects())
        self.assertIsNone(self.ctx.users.find_by_id(ann["id"]))
        with self.assertRaises(UnauthorizedError):
            self.users.resolve_principal(token)
        with self.assertRaises(NotFoundError):
            self.users.get(self.admin, ann["id"])

    def test_listing_scoped_by_role(self):
        self._register(email="p1@x.com")
        self._register(email="p2@x.com")
        organizer = self._register(email="org@x.com", role="organizer")

        page = self.users.list(_principal(organizer), role="admin")
        self.assertEqual(sorted(u["email"] for u in page.items), ["p1@x.com", "p2@x.com"])

        page = self.users.list(self.admin, role="admin")
        self.assertEqual([u["email"] for u in page.items], ["admin@x.com"])
        page = self.users.list(self.admin, limit="2")
        self.assertEqual(len(page.items), 2)
        self.assertIsNotNone(page.next_token)

        with self.assertRaises(ForbiddenError):
            self.users.list(Principal(id="p", role="participant"))
        with self.assertRaises(ValidationError):
            self.users.list(self.admin, limit="0")

    def test_upload_profile_image(self):
        ann = self._register()
        image = ImageUpload(data=b"png", filename="me.png", content_type="image/png")
        updated = self.users.upload_profile_image(_principal(ann), ann["id"], image)
        self.assertTrue(updated["profile_image_url"].startswith("https://bucket.s3.us-east-1.amazonaws.com/general/"))
        with self.assertRaises(ForbiddenError):
            self.users.upload_profile_image(Principal(id="x", role="participant"), ann["id"], image)

    def test_resolve_principal_rejects_garbage(self):
        with self.assertRaises(UnauthorizedError):
            self.users.resolve_principal("not-a-token")


class EventServiceTests(_ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.organizer = _principal(self._register(email="org@x.com", role="organizer"))
        self.participant = _principal(self._register(email="p@x.com"))

    def _create(self, principal=None, **overrides):
        data = {"name": "Node Bootcamp", "description": "NestJS deep dive", "date": FUTURE}
        data.update(overrides)
        return self.events.create(principal or self.organizer, data)

    def test_create_sets_owner(self):
        event = self._create()
        self.assertEqual(event["organizer_id"], self.organizer.id)
        self.assertEqual(self.events.get(event["id"])["name"], "Node Bootcamp")

    def test_create_restrictions(self):
        with self.assertRaises(ForbiddenError):
            self._create(self.participant)
        with self.assertRaises(ForbiddenError):
            self._create(organizer_id="someone-else")
        with self.assertRaises(ValidationError):
            self._create(name="ab")
        with self.assertRaises(ValidationError):
            self._create(date="next week")
        event = self._create(self.admin, organizer_id=self.organizer.id)
        self.assertEqual(event["organizer_id"], self.organizer.id)

    def test_duplicate_name(self):
        self._create()
        with self.assertRaises(ConflictError):
            self._create()

    def test_update_and_delete_by_owner_or_admin(self):
        event = self._create()
        other = Principal(id="org-2", role="organizer")
        with self.assertRaises(ForbiddenError):
            self.events.update(other, event["id"], {"description": "x"})
        with self.assertRaises(ForbiddenError):
            self.events.update(self.organizer, event["id"], {"organizer_id": "org-2"})
        self.assertEqual(self.events.update(self.organizer, event["id"], {"description": "New"})["description"], "New")
        self.assertEqual(self.events.update(self.admin, event["id"], {"organizer_id": "org-2"})["organizer_id"], "org-2")

        with self.assertRaises(ForbiddenError):
            self.events.delete(self.organizer, event["id"])
        self.events.delete(self.admin, event["id"])
        with self.assertRaises(NotFoundError):
            self.events.get(event["id"])

    def test_listing(self):
        kept = self._create(name="Kept")
        gone = self._create(name="Gone")
        self.events.delete(self.organizer, gone["id"])
        self.assertEqual([e["id"] for e in self.events.list().items], [kept["id"]])
        self.assertEqual([e["id"] for e in self.events.list(status="inactive").items], [gone["id"]])
        with self.assertRaises(ValidationError):
            self.events.list(status="archived")
        with self.assertRaises(ValidationError):
            self.events.list(date="someday")
        with self.assertRaises(ValidationError):
            self.events.list(token="%%%")

    def test_mutations_log_acting_principal(self):
        with self.assertLogs("compass_events.serialization", level="INFO") as logs:
            event = self._create()
            self.events.update(self.admin, event["id"], {"description": "New"})
            self.events.delete(self.organizer, event["id"])
        self.assertEqual(
            self._observed(logs, "events"),
            [("created", self.organizer.id), ("updated", self.admin.id), ("deleted", self.organizer.id)],
        )

    def test_upload_image(self):
        event = self._create()
        image = ImageUpload(data=b"jpg", filename="cover.jpg", content_type="image/jpeg")
        updated = self.events.upload_image(self.organizer, event["id"], image)
        self.assertIn(f"/events/{event['id']}/", updated["image_url"])
        with self.assertRaises(ForbiddenError):
            self.events.upload_image(self.participant, event["id"], image)


class RegistrationServiceTests(_ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.organizer = _principal(self._register(email="org@x.com", role="organizer"))
        self.participant = _principal(self._register(email="p@x.com"))
        self.event = self.events.create(
            self.organizer, {"name": "Node Bootcamp", "description": "d", "date": FUTURE},
        )
        self.ses.send_email.reset_mock()

    def test_register_and_cancel(self):
        reg = self.registrations.create(self.participant, self.event["id"])
        self.assertEqual(reg["participant_id"], self.participant.id)
        self.assertEqual(self._sent_subjects(), ["Registration Confirmed"])
        self.assertEqual(len(self.registrations.list(self.participant).items), 1)

        with self.assertRaises(ForbiddenError):
            self.registrations.cancel(self.organizer, reg["id"])
        self.registrations.cancel(self.participant, reg["id"])
        self.assertEqual(self._sent_subjects(), ["Registration Confirmed", "Registration Cancelled"])
        self.assertEqual(self.registrations.list(self.participant).items, [])
        with self.assertRaises(NotFoundError):
            self.registrations.cancel(self.participant, reg["id"])

    def test_cancel_logs_acting_principal(self):
        reg = self.registrations.create(self.participant, self.event["id"])
        with self.assertLogs("compass_events.serialization", level="INFO") as logs:
            self.registrations.cancel(self.participant, reg["id"])
        self.assertEqual(self._observed(logs, "registrations"), [("cancelled", self.participant.id)])

    def test_notification_failure_keeps_registration(self):
        self.ses.send_email.side_effect = ClientError({"Error": {"Code": "MessageRejected"}}, "SendEmail")
        reg = self.registrations.create(self.participant, self.event["id"])
        self.assertEqual(self.ctx.registrations.find_by_id(reg["id"]), reg)

    def test_past_and_inactive_events_rejected(self):
        past = self.events.create(self.organizer, {"name": "Old Meetup", "description": "d", "date": PAST})
        with self.assertRaises(ValidationError):
            self.registrations.create(self.participant, past["id"])
        self.events.delete(self.organizer, self.event["id"])
        with self.assertRaises(ValidationError):
            self.registrations.create(self.participant, self.event["id"])
        with self.assertRaises(NotFoundError):
            self.registrations.create(self.participant, "ghost")
        self.ses.send_email.assert_not_called()

    def test_admin_cannot_register(self):
        with self.assertRaises(ForbiddenError):
            self.registrations.create(self.admin, self.event["id"])

    def test_organizer_may_register(self):
        reg = self.registrations.create(self.organizer, self.event["id"])
        page = self.registrations.list(self.organizer, event_id=self.event["id"])
        self.assertEqual([r["id"] for r in page.items], [reg["id"]])


if __name__ == "__main__":
    unittest.main()
