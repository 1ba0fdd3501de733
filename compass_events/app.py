"""app.py — Application wiring: clients -> stores -> repositories -> services.

    ctx = AppContext.from_env()      # DynamoDB / S3 / SES from environment
    ctx = AppContext.in_memory()     # process-local store, no AWS calls
    ...
    ctx.close()

AppContext owns the clients it builds and closes them on shutdown.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from compass_events.aws_clients import build_dynamodb_client, build_s3_client, build_ses_client
from compass_events.config import S3_BUCKET, S3_ENDPOINT, S3_REGION, SES_MAIL_FROM, UNIQUE_KEYS_TABLE
from compass_events.notifications import EmailDispatcher
from compass_events.repositories import EventRepository, RegistrationRepository, UniqueKeyGuard, UserRepository
from compass_events.services import EventService, RegistrationService, UserService
from compass_events.storage import ImageStorage
from compass_events.store import DynamoTableStore, InMemoryTableStore, TableStore

__all__ = ["AppContext", "KEY_SCHEMA"]

logger = logging.getLogger(__name__)

KEY_SCHEMA = {UNIQUE_KEYS_TABLE: ("key",)}


@dataclass
class AppContext:
    store: TableStore
    users: UserRepository
    events: EventRepository
    registrations: RegistrationRepository
    user_service: UserService
    event_service: EventService
    registration_service: RegistrationService
    _clients: List[Any] = field(default_factory=list, repr=False)

    @classmethod
    def build(
        cls,
        store: TableStore,
        *,
        mailer: Optional[EmailDispatcher] = None,
        images: Optional[ImageStorage] = None,
        clients: Optional[List[Any]] = None,
        **user_service_options: Any,
    ) -> "AppContext":
        mailer = mailer or EmailDispatcher()
        guard = UniqueKeyGuard(store)
        users = UserRepository(store, guard)
        events = EventRepository(store, guard)
        registrations = RegistrationRepository(store, events)
        return cls(
            store=store,
            users=users,
            events=events,
            registrations=registrations,
            user_service=UserService(users, mailer, images, **user_service_options),
            event_service=EventService(events, images),
            registration_service=RegistrationService(registrations, events, users, mailer),
            _clients=list(clients or []),
        )

    @classmethod
    def from_env(cls, **user_service_options: Any) -> "AppContext":
        dynamodb = build_dynamodb_client()
        s3 = build_s3_client()
        clients: List[Any] = [s3]
        ses = build_ses_client() if SES_MAIL_FROM else None
        if ses is not None:
            clients.append(ses)
        mailer = EmailDispatcher(ses, SES_MAIL_FROM)
        logger.info("AppContext wired against DynamoDB (S3 bucket %s)", S3_BUCKET)
        return cls.build(
            DynamoTableStore(dynamodb, key_schema=KEY_SCHEMA),
            mailer=mailer,
            images=ImageStorage(s3, S3_BUCKET, S3_REGION, S3_ENDPOINT),
            clients=clients,
            **user_service_options,
        )

    @classmethod
    def in_memory(
        cls,
        *,
        mailer: Optional[EmailDispatcher] = None,
        images: Optional[ImageStorage] = None,
        **user_service_options: Any,
    ) -> "AppContext":
        return cls.build(
            InMemoryTableStore(key_schema=KEY_SCHEMA),
            mailer=mailer,
            images=images,
            **user_service_options,
        )

    def close(self) -> None:
        self.store.close()
        for client in self._clients:
            close = getattr(client, "close", None)
            if callable(close):
                close()
        self._clients.clear()
