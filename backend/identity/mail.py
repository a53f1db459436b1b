"""Transactional email hand-off to the mail queue.

The gateway never sends mail itself. It publishes a JSON record on a Redis
pub/sub channel and a separate consumer renders and delivers it. Publishing is
best effort: a failed or slow publish is logged and the request still succeeds.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import anyio
import redis.asyncio as aioredis
import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from datetime import timedelta

logger = structlog.get_logger()

DEFAULT_CHANNEL = "email-queue"


class EmailType(StrEnum):
    VERIFY = "verify"
    PASSWORD_RESET = "password_reset"
    PASSWORD_UPDATED = "password_updated"
    PASSWORDLESS = "passwordless"
    EMAIL_CHANGED = "email_changed"


class QueueEmail(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    name: str
    to: str
    email_type: EmailType
    token: str | None = None
    ttl: str | None = None
    link_url: str | None = None

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def ttl_text(ttl: timedelta) -> str:
    """Render a token lifetime the way mail templates show it, e.g. "10 minutes"."""
    return f"{int(ttl.total_seconds() // 60)} minutes"


class EmailPublisher(Protocol):
    async def publish(self, email: QueueEmail) -> None: ...

    async def close(self) -> None: ...


class RedisEmailPublisher:
    """Publish emails to a Redis channel. The client pools its connections."""

    def __init__(
        self,
        addr: str,
        channel: str = DEFAULT_CHANNEL,
        *,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        host, _, port = addr.rpartition(":")
        if not host:
            host, port = addr, "6379"
        self._channel = channel
        self._client = aioredis.Redis(
            host=host,
            port=int(port),
            username=username or None,
            password=password or None,
            decode_responses=True,
        )

    async def publish(self, email: QueueEmail) -> None:
        await self._client.publish(self._channel, email.to_wire())

    async def close(self) -> None:
        await self._client.aclose()


class MemoryEmailPublisher:
    """Keep published emails in memory. Used when no queue is configured, and by tests."""

    def __init__(self) -> None:
        self.records: list[QueueEmail] = []

    async def publish(self, email: QueueEmail) -> None:
        self.records.append(email)
        logger.info("email queued in memory", email_type=email.email_type)

    async def close(self) -> None:
        self.records.clear()

    def of_type(self, email_type: EmailType) -> list[QueueEmail]:
        return [r for r in self.records if r.email_type == email_type]


class EmailQueue:
    """Send emails through a publisher with a deadline, never raising."""

    def __init__(self, publisher: EmailPublisher, *, deadline_secs: float = 5.0) -> None:
        self._publisher = publisher
        self._deadline = deadline_secs

    @property
    def publisher(self) -> EmailPublisher:
        return self._publisher

    async def send(self, email: QueueEmail, *, user_uuid: str = "") -> bool:
        """Return True if the email was handed to the queue."""
        try:
            with anyio.fail_after(self._deadline):
                await self._publisher.publish(email)
        except (TimeoutError, RedisError, OSError) as exc:
            logger.warning(
                "email publish failed",
                email_type=email.email_type,
                user_uuid=user_uuid,
                error=type(exc).__name__,
            )
            return False
        return True

    async def close(self) -> None:
        await self._publisher.close()
