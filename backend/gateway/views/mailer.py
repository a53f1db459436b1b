"""Queue transactional emails from view handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from identity.mail import QueueEmail, ttl_text

if TYPE_CHECKING:
    from starlette.requests import Request

    from gateway.settings import GatewaySettings
    from identity.mail import EmailQueue, EmailType
    from identity.models import AuthUser, TokenKind
    from identity.tokens import TokenCodec


async def send_email(
    request: Request,
    user: AuthUser,
    email_type: EmailType,
    *,
    token: str | None = None,
    kind: TokenKind | None = None,
    link: str | None = None,
    to: str | None = None,
) -> bool:
    """Queue an email for ``user``. ``to`` overrides the recipient address.

    Failures are logged by the queue and reported as False; they never fail the request.
    """
    settings: GatewaySettings = request.app.state.settings
    codec: TokenCodec = request.app.state.token_codec
    queue: EmailQueue = request.app.state.email_queue

    email = QueueEmail(
        name=user.first_name or user.username,
        to=to or user.email,
        email_type=email_type,
        token=token,
        ttl=ttl_text(codec.ttl(kind)) if kind is not None else None,
        link_url=settings.link(link) if link else None,
    )
    return await queue.send(email, user_uuid=user.uuid)
