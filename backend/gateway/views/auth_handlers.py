"""Bearer-token auth endpoints: signup, sign-in, email verification and resets.

Guards are attached where the routes are declared in ``gateway.app``; by the
time a handler runs, any bearer token it needs is verified and its kind asserted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from gateway.auth import Validator
from gateway.responses import data_response, error_response, ok_response
from gateway.views.mailer import send_email
from identity.errors import token_invalid
from identity.mail import EmailType
from identity.models import TokenKind
from identity.roles import can_sign_in
from identity.tokens import check_otp, derive_otp, new_nonce

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from gateway.settings import GatewaySettings
    from identity.models import AuthUser
    from identity.service import AuthService
    from identity.tokens import TokenCodec

logger = structlog.get_logger()

PASSWORDLESS_SENT = "check your email for a magic link to sign in"
PASSWORD_RESET_SENT = "check your email for a password reset link"


def _codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def _settings(request: Request) -> GatewaySettings:
    return request.app.state.settings


async def send_verification_email(request: Request, user: AuthUser, *, to: str | None = None) -> bool:
    token = _codec(request).mint(TokenKind.VERIFY_EMAIL, user.uuid, otp=derive_otp(user))
    return await send_email(
        request,
        user,
        EmailType.VERIFY,
        token=token,
        kind=TokenKind.VERIFY_EMAIL,
        link=_settings(request).verify_email_url,
        to=to,
    )


def issue_tokens(request: Request, user: AuthUser, role_claim: str) -> Response:
    codec = _codec(request)
    return data_response(
        {
            "refreshToken": codec.mint(TokenKind.REFRESH, user.uuid, roles=role_claim),
            "accessToken": codec.mint(TokenKind.ACCESS, user.uuid, roles=role_claim),
        },
    )


async def signup(request: Request) -> Response:
    """POST /signup - create an unverified account and mail a verification link."""

    async def create(validator: Validator) -> Response:
        body = validator.login
        service: AuthService = request.app.state.auth_service
        user, created = await service.signup(
            username=body.username,
            email=body.email,
            password=body.password,
            first_name=body.first_name,
        )
        await send_verification_email(request, user)
        message = "check your email for a verification link" if created else "verification email sent again"
        return data_response(user.snapshot(), message)

    return await Validator(request).parse_login_request_body().success(create)


async def signin(request: Request) -> Response:
    """POST /auth/signin - exchange a password for refresh and access tokens.

    An empty password switches to the passwordless flow and mails a magic link.
    """

    async def with_password(validator: Validator) -> Response:
        if not validator.login.password:
            return await _send_passwordless_link(validator)
        return await (
            validator.load_auth_user_from_username()
            .check_user_has_verified_email_address()
            .check_user_can_sign_in()
            .check_password()
            .success(_signed_in)
        )

    return await Validator(request).parse_login_request_body().success(with_password)


async def _signed_in(validator: Validator) -> Response:
    user = validator.user
    logger.info("user signed in", user_uuid=user.uuid)
    return issue_tokens(validator.request, user, validator.role_claim)


async def passwordless_email(request: Request) -> Response:
    """POST /auth/passwordless/email - mail a magic link. Always reports success."""
    return await Validator(request).parse_login_request_body().success(_send_passwordless_link)


async def _send_passwordless_link(validator: Validator) -> Response:
    request = validator.request
    body = validator.login
    service: AuthService = request.app.state.auth_service

    user = await service.find_user(body.username, body.email)
    if user is not None and user.is_verified and can_sign_in(await service.role_claim(user)):
        token = _codec(request).mint(
            TokenKind.PASSWORDLESS,
            user.uuid,
            otp=new_nonce(),
            redirect_url=body.redirect_url or None,
        )
        await send_email(
            request,
            user,
            EmailType.PASSWORDLESS,
            token=token,
            kind=TokenKind.PASSWORDLESS,
            link=_settings(request).passwordless_url,
        )
    else:
        logger.info("passwordless link not sent", known=user is not None)
    return ok_response(PASSWORDLESS_SENT)


async def passwordless_signin(request: Request) -> Response:
    """POST /auth/passwordless/signin - redeem a magic-link token for a refresh token."""

    async def refresh_token(validator: Validator) -> Response:
        user = validator.user
        logger.info("user signed in", user_uuid=user.uuid, method="passwordless")
        token = _codec(request).mint(TokenKind.REFRESH, user.uuid, roles=validator.role_claim)
        return data_response({"refreshToken": token})

    return await (
        Validator(request)
        .load_auth_user_from_token()
        .check_user_has_verified_email_address()
        .check_user_can_sign_in()
        .success(refresh_token)
    )


async def verify_email(request: Request) -> Response:
    """POST /auth/email/verified - mark the address verified.

    Redeeming for an already verified user succeeds without re-checking the
    passcode, so concurrent redemptions of the same link all succeed.
    """

    async def verify(validator: Validator) -> Response:
        user = validator.user
        if not user.is_verified:
            if not check_otp(user, validator.claims.otp):
                return _invalid_otp(request)
            user = await validator.service.verify_email(user)
        return data_response(user.snapshot(), "email address verified")

    return await Validator(request).load_auth_user_from_token().success(verify)


def _invalid_otp(request: Request) -> Response:
    logger.info("one-time passcode rejected", path=request.url.path)
    return error_response(token_invalid("invalid one-time passcode"))


async def reset_email(request: Request) -> Response:
    """POST /auth/email/reset - mail a confirmation link to the new address."""

    async def send_link(validator: Validator) -> Response:
        user = validator.user
        new_email = await validator.service.ensure_email_available(validator.login.email, for_user=user)
        token = _codec(request).mint(TokenKind.CHANGE_EMAIL, user.uuid, otp=derive_otp(user), email=new_email)
        await send_email(
            request,
            user,
            EmailType.VERIFY,
            token=token,
            kind=TokenKind.CHANGE_EMAIL,
            link=_settings(request).change_email_url,
            to=new_email,
        )
        return ok_response("check your new email address for a confirmation link")

    return await Validator(request).parse_login_request_body().load_auth_user_from_token().success(send_link)


async def update_email(request: Request) -> Response:
    """POST /auth/email/update - switch to the address carried by the token."""

    async def change(validator: Validator) -> Response:
        user = validator.user
        new_email = validator.claims.email
        if not new_email:
            return _invalid_otp(request)
        old_email = user.email
        updated = await validator.service.change_email(user, new_email)
        await send_email(request, updated, EmailType.EMAIL_CHANGED, to=old_email)
        await send_verification_email(request, updated)
        return data_response(updated.snapshot(), "email address updated")

    return await Validator(request).load_auth_user_from_token().check_otp_valid().success(change)


async def reset_password(request: Request) -> Response:
    """POST /auth/passwords/reset - mail a reset link. Always reports success."""

    async def send_link(validator: Validator) -> Response:
        body = validator.login
        user = await validator.service.find_user(body.username, body.email)
        if user is not None:
            token = _codec(request).mint(TokenKind.RESET_PASSWORD, user.uuid, otp=derive_otp(user))
            await send_email(
                request,
                user,
                EmailType.PASSWORD_RESET,
                token=token,
                kind=TokenKind.RESET_PASSWORD,
                link=_settings(request).reset_password_url,
            )
        return ok_response(PASSWORD_RESET_SENT)

    return await Validator(request).parse_login_request_body().success(send_link)


async def update_password(request: Request) -> Response:
    """POST /auth/passwords/update - set a new password; older reset links stop working."""

    async def change(validator: Validator) -> Response:
        user = validator.user
        updated = await validator.service.set_password(user, validator.login.password)
        await send_email(request, updated, EmailType.PASSWORD_UPDATED)
        return ok_response("password updated")

    return await (
        Validator(request).parse_login_request_body().load_auth_user_from_token().check_otp_valid().success(change)
    )
