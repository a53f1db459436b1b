"""Per-request validation pipeline for the auth routes.

Steps are queued fluently and run in order by ``success``. Each step either
fills in state (body, user, role claim) or records an error on the request's
``RequestAuth``. The first error is sticky: later steps are skipped and
``success`` returns that error's response instead of calling the handler.

    return await (
        Validator(request)
        .parse_login_request_body()
        .load_auth_user_from_username()
        .check_user_has_verified_email_address()
        .success(sign_in)
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from gateway.auth.context import request_auth
from gateway.responses import error_response, read_json
from identity.errors import ApiError, ErrorKind, bad_request, invalid_credentials, token_invalid, wrong_token_type
from identity.models import TokenKind
from identity.tokens import check_otp

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

    from identity.models import AuthUser, TokenClaims
    from identity.service import AuthService


class LoginBody(BaseModel):
    """Fields accepted by the login-style routes. Which ones matter depends on the route."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    username: str = ""
    email: str = ""
    password: str = ""
    otp: str = ""
    first_name: str = ""
    redirect_url: str = ""
    # Accepted for client compatibility; not used.
    callback_url: str = ""
    visit_url: str = ""


class Validator:
    def __init__(self, request: Request) -> None:
        self.request = request
        self.auth = request_auth(request)
        self.body: LoginBody | None = None
        self.auth_user: AuthUser | None = None
        self.role_claim: str = ""
        self._steps: list[Callable[[], Awaitable[None]]] = []

    @property
    def service(self) -> AuthService:
        return self.request.app.state.auth_service

    @property
    def claims(self) -> TokenClaims:
        """Verified bearer claims; only valid inside steps queued after a jwt guard."""
        if self.auth.claims is None:
            raise token_invalid("no verified token")
        return self.auth.claims

    @property
    def user(self) -> AuthUser:
        """The user resolved by a load step."""
        if self.auth_user is None:
            raise invalid_credentials()
        return self.auth_user

    @property
    def login(self) -> LoginBody:
        return self.body if self.body is not None else LoginBody()

    def parse_login_request_body(self) -> Validator:
        self._steps.append(self._parse_login_request_body)
        return self

    def load_auth_user_from_username(self) -> Validator:
        """Resolve the user by username if given, else by email. Username wins."""
        self._steps.append(self._load_auth_user_from_username)
        return self

    def load_auth_user_from_token(self) -> Validator:
        self._steps.append(self._load_auth_user_from_token)
        return self

    def check_user_has_verified_email_address(self) -> Validator:
        self._steps.append(self._check_user_has_verified_email_address)
        return self

    def check_user_can_sign_in(self) -> Validator:
        self._steps.append(self._check_user_can_sign_in)
        return self

    def check_token_kind(self, kind: TokenKind) -> Validator:
        async def step() -> None:
            if self.claims.kind != kind:
                raise wrong_token_type(self.claims.kind, kind)

        self._steps.append(step)
        return self

    def check_is_valid_refresh_token(self) -> Validator:
        return self.check_token_kind(TokenKind.REFRESH)

    def check_password(self) -> Validator:
        """Compare the body password with the loaded user's hash."""
        self._steps.append(self._check_password)
        return self

    def check_otp_valid(self) -> Validator:
        """Recompute the OTP for the loaded user and compare it with the token's."""
        self._steps.append(self._check_otp_valid)
        return self

    async def success(self, fn: Callable[[Validator], Awaitable[Response]]) -> Response:
        while self._steps and not self.auth.failed:
            step = self._steps.pop(0)
            try:
                await step()
            except ApiError as exc:
                self.auth.record(exc)

        error = self.auth.first_error
        if error is not None:
            return error_response(error)
        return await fn(self)

    # -- steps --

    async def _parse_login_request_body(self) -> None:
        self.body = await read_json(self.request, LoginBody)

    async def _load_auth_user_from_username(self) -> None:
        body = self.login
        if not body.username and not body.email:
            raise bad_request("username or email is required")
        user = await self.service.find_user(body.username, body.email)
        if user is None:
            await self.service.check_password(None, body.password)
        self.auth_user = user
        self.auth.auth_user = user

    async def _load_auth_user_from_token(self) -> None:
        user = await self.service.get_user(self.claims.user_id)
        if user is None:
            raise token_invalid("user not found")
        self.auth_user = user
        self.auth.auth_user = user

    async def _check_user_has_verified_email_address(self) -> None:
        if self.auth_user is None or not self.auth_user.is_verified:
            raise ApiError(ErrorKind.EMAIL_NOT_VERIFIED, "email address not verified")

    async def _check_user_can_sign_in(self) -> None:
        if self.auth_user is None:
            raise invalid_credentials()
        self.role_claim = await self.service.sign_in_claim(self.auth_user)

    async def _check_password(self) -> None:
        await self.service.check_password(self.auth_user, self.login.password)

    async def _check_otp_valid(self) -> None:
        if self.auth_user is None or not check_otp(self.auth_user, self.claims.otp):
            raise token_invalid("invalid one-time passcode")
