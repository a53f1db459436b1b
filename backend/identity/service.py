"""Account service coordinating signup, credentials, email and API keys.

Password, email and verification writes run inside a shielded cancel scope and
complete even if the client disconnects mid-request.
"""

from __future__ import annotations

import secrets
import time
from typing import TYPE_CHECKING
from uuid import uuid4

import anyio
import structlog

from identity.directory import DirectoryError, UserConflictError, UserNotFoundError
from identity.errors import ApiError, ErrorKind, bad_request, invalid_credentials
from identity.models import AuthUser
from identity.password import PASSWORD_MAX_BYTES, hash_api_key
from identity.roles import can_sign_in, make_role_claim

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

    from identity.directory import UserDirectory
    from identity.models import FederatedClaims
    from identity.password import PasswordHasher

logger = structlog.get_logger()

USERNAME_MAX_LENGTH = 255
EMAIL_MAX_LENGTH = 254
FIRST_NAME_MAX_LENGTH = 255
API_KEY_BYTES = 32


class AuthService:
    """Coordinate user accounts on top of a UserDirectory."""

    def __init__(
        self,
        directory: UserDirectory,
        *,
        password_hasher: PasswordHasher,
        default_roles: Iterable[str] = (),
    ) -> None:
        self._directory = directory
        self._hasher = password_hasher
        self._default_roles = list(default_roles)

    @property
    def directory(self) -> UserDirectory:
        return self._directory

    # -- lookup --

    async def find_user(self, username: str = "", email: str = "") -> AuthUser | None:
        """Resolve by username if given, else by email."""
        if username:
            return await self._directory.get_by_username(username)
        if email:
            return await self._directory.get_by_email(email)
        return None

    async def get_user(self, uuid: str) -> AuthUser | None:
        return await self._directory.get_by_uuid(uuid)

    async def require_user(self, uuid: str) -> AuthUser:
        user = await self._directory.get_by_uuid(uuid)
        if user is None:
            raise ApiError(ErrorKind.NOT_FOUND, "user not found")
        return user

    async def role_claim(self, user: AuthUser) -> str:
        return make_role_claim(await self._directory.list_roles(user.uuid))

    async def sign_in_claim(self, user: AuthUser) -> str:
        """Return the user's role claim, or raise if the roles do not permit sign-in."""
        claim = await self.role_claim(user)
        if not can_sign_in(claim):
            raise ApiError(ErrorKind.USER_NOT_ALLOWED_TO_SIGN_IN, "user is not allowed to sign in")
        return claim

    # -- credentials --

    async def check_password(self, user: AuthUser | None, password: str) -> AuthUser:
        """Raise INVALID_CREDENTIALS unless ``password`` matches.

        An unknown user costs one hash verification too, so timing does not
        reveal whether the account exists.
        """
        if user is None:
            await self._hasher.burn(password)
            raise invalid_credentials()
        if not await self._hasher.verify(password, user.password_hash):
            raise invalid_credentials()
        return user

    async def signup(
        self,
        *,
        username: str,
        email: str,
        password: str = "",
        first_name: str = "",
    ) -> tuple[AuthUser, bool]:
        """Create an unverified account. Returns (user, created).

        Signing up again with the email of an unverified account returns that
        account unchanged so the caller can resend the verification email.
        """
        email = _validate_email(email)
        username = _validate_username(username or email)
        _validate_password(password)
        first_name = _validate_first_name(first_name)

        existing = await self._directory.get_by_email(email)
        if existing is not None:
            if existing.is_verified:
                raise ApiError(ErrorKind.USER_EXISTS, "an account with this email already exists")
            logger.info("signup for unverified account", user_uuid=existing.uuid)
            return existing, False

        taken = await self._directory.get_by_username(username)
        if taken is not None:
            raise ApiError(ErrorKind.USER_EXISTS, "username already taken")

        password_hash = await self._hasher.hash(password) if password else ""
        user = AuthUser(
            uuid=str(uuid4()),
            username=username,
            email=email,
            first_name=first_name,
            password_hash=password_hash,
        )
        user = await self._write(self._directory.create_user(user, self._default_roles))
        logger.info("user signed up", user_uuid=user.uuid)
        return user, True

    async def set_password(self, user: AuthUser, password: str) -> AuthUser:
        """Store a new password hash; outstanding one-time tokens stop matching."""
        if not password:
            raise bad_request("password must not be empty")
        _validate_password(password)
        password_hash = await self._hasher.hash(password)
        with anyio.CancelScope(shield=True):
            updated = await self._write(self._directory.set_password_hash(user.uuid, password_hash))
            logger.info("password updated", user_uuid=user.uuid)
        return updated

    async def verify_email(self, user: AuthUser) -> AuthUser:
        """Mark the email verified. A second call keeps the first timestamp."""
        with anyio.CancelScope(shield=True):
            updated = await self._write(self._directory.mark_email_verified(user.uuid, int(time.time())))
        if not user.is_verified:
            logger.info("email verified", user_uuid=user.uuid)
        return updated

    async def ensure_email_available(self, email: str, *, for_user: AuthUser) -> str:
        email = _validate_email(email)
        owner = await self._directory.get_by_email(email)
        if owner is not None and owner.uuid != for_user.uuid:
            raise ApiError(ErrorKind.USER_EXISTS, "email already in use")
        return email

    async def change_email(self, user: AuthUser, email: str) -> AuthUser:
        """Switch to a new address and reset verification."""
        email = await self.ensure_email_available(email, for_user=user)
        with anyio.CancelScope(shield=True):
            updated = await self._write(self._directory.set_email(user.uuid, email))
            logger.info("email changed", user_uuid=user.uuid)
        return updated

    async def update_profile(self, user: AuthUser, *, username: str = "", first_name: str | None = None) -> AuthUser:
        new_username = _validate_username(username) if username else None
        new_first_name = _validate_first_name(first_name) if first_name is not None else None
        return await self._write(
            self._directory.update_profile(user.uuid, username=new_username, first_name=new_first_name),
        )

    # -- federated --

    async def provision_federated(self, claims: FederatedClaims) -> AuthUser:
        """Map a federated identity to a local user by email, creating one if needed.

        The provider must assert that the email is verified, both for mapping to an
        existing account and for creating a new one.
        """
        if not claims.email:
            raise ApiError(ErrorKind.TOKEN_INVALID, "federated token has no email")
        if not claims.email_verified:
            raise ApiError(ErrorKind.EMAIL_NOT_VERIFIED, "federated email is not verified")

        user = await self._directory.get_by_email(claims.email)
        if user is not None:
            if not user.is_verified:
                user = await self.verify_email(user)
            return user

        user = AuthUser(
            uuid=str(uuid4()),
            username=_validate_username(claims.email),
            email=_validate_email(claims.email),
            first_name=claims.name[:FIRST_NAME_MAX_LENGTH],
            email_verified_at=int(time.time()),
        )
        user = await self._write(self._directory.create_user(user, self._default_roles))
        logger.info("federated user provisioned", user_uuid=user.uuid)
        return user

    # -- API keys --

    async def issue_api_key(self, user: AuthUser) -> tuple[AuthUser, str]:
        """Generate and store a new API key. The raw key is returned once and never stored."""
        raw_key = secrets.token_urlsafe(API_KEY_BYTES)
        updated = await self._write(self._directory.set_api_key_hash(user.uuid, hash_api_key(raw_key)))
        logger.info("api key issued", user_uuid=user.uuid)
        return updated, raw_key

    async def user_for_api_key(self, raw_key: str) -> AuthUser | None:
        if not raw_key:
            return None
        return await self._directory.get_by_api_key_hash(hash_api_key(raw_key))

    # -- admin --

    async def add_user(
        self,
        *,
        username: str,
        email: str,
        password: str = "",
        first_name: str = "",
        roles: Iterable[str] = (),
        verified: bool = True,
    ) -> AuthUser:
        email = _validate_email(email)
        username = _validate_username(username or email)
        _validate_password(password)
        user = AuthUser(
            uuid=str(uuid4()),
            username=username,
            email=email,
            first_name=_validate_first_name(first_name),
            email_verified_at=int(time.time()) if verified else 0,
            password_hash=await self._hasher.hash(password) if password else "",
        )
        return await self._write(self._directory.create_user(user, roles))

    async def set_roles(self, user: AuthUser, roles: Iterable[str]) -> list[str]:
        return await self._write(self._directory.set_roles(user.uuid, roles))

    async def delete_user(self, uuid: str) -> None:
        if not await self._directory.delete_user(uuid):
            raise ApiError(ErrorKind.NOT_FOUND, "user not found")
        logger.info("user deleted", user_uuid=uuid)

    # -- private helpers --

    @staticmethod
    async def _write[T](write: Awaitable[T]) -> T:
        """Await a directory write, mapping directory errors to API errors."""
        try:
            return await write
        except UserConflictError as exc:
            raise ApiError(ErrorKind.USER_EXISTS, f"{exc.field} already in use") from exc
        except UserNotFoundError as exc:
            raise ApiError(ErrorKind.NOT_FOUND, "user not found") from exc
        except DirectoryError as exc:
            raise bad_request(str(exc)) from exc


def _validate_email(email: str) -> str:
    email = email.strip()
    if not email or "@" not in email or len(email) > EMAIL_MAX_LENGTH:
        raise bad_request("invalid email address")
    return email


def _validate_username(username: str) -> str:
    username = username.strip()
    if not username or len(username) > USERNAME_MAX_LENGTH or any(c.isspace() for c in username):
        raise bad_request("invalid username")
    return username


def _validate_password(password: str) -> None:
    """Empty passwords are allowed for passwordless-only accounts."""
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise bad_request(f"password must not exceed {PASSWORD_MAX_BYTES} bytes")


def _validate_first_name(first_name: str) -> str:
    first_name = first_name.strip()
    if len(first_name) > FIRST_NAME_MAX_LENGTH:
        raise bad_request("first name is too long")
    return first_name
