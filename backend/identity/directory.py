"""Abstract interface for user and role persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from identity.models import AuthUser


class DirectoryError(Exception):
    """A directory write could not be applied."""


class UserConflictError(DirectoryError):
    """Username, email or API key hash already belongs to another user."""

    def __init__(self, field: str) -> None:
        super().__init__(f"{field} already in use")
        self.field = field


class UserNotFoundError(DirectoryError):
    def __init__(self, uuid: str) -> None:
        super().__init__(f"user {uuid} not found")
        self.uuid = uuid


class UserDirectory(ABC):
    """Lookup and mutation of AuthUser records and their roles.

    Usernames and emails are unique case-insensitively. Implementations must be
    safe for concurrent use; every mutating method returns the stored record.
    """

    @abstractmethod
    async def create_user(self, user: AuthUser, roles: Iterable[str] = ()) -> AuthUser: ...

    @abstractmethod
    async def get_by_uuid(self, uuid: str) -> AuthUser | None: ...

    @abstractmethod
    async def get_by_username(self, username: str) -> AuthUser | None: ...

    @abstractmethod
    async def get_by_email(self, email: str) -> AuthUser | None: ...

    @abstractmethod
    async def get_by_api_key_hash(self, api_key_hash: str) -> AuthUser | None: ...

    @abstractmethod
    async def set_password_hash(self, uuid: str, password_hash: str) -> AuthUser: ...

    @abstractmethod
    async def mark_email_verified(self, uuid: str, verified_at: int) -> AuthUser:
        """Set the verification time only if the user is still unverified."""

    @abstractmethod
    async def set_email(self, uuid: str, email: str) -> AuthUser:
        """Change the email and reset verification."""

    @abstractmethod
    async def update_profile(
        self,
        uuid: str,
        *,
        username: str | None = None,
        first_name: str | None = None,
    ) -> AuthUser: ...

    @abstractmethod
    async def set_api_key_hash(self, uuid: str, api_key_hash: str | None) -> AuthUser: ...

    @abstractmethod
    async def list_roles(self, uuid: str) -> list[str]: ...

    @abstractmethod
    async def set_roles(self, uuid: str, roles: Iterable[str]) -> list[str]: ...

    @abstractmethod
    async def all_roles(self) -> list[str]:
        """Every role name the directory knows about, sorted."""

    @abstractmethod
    async def list_users(self, offset: int = 0, limit: int = 100, query: str = "") -> list[AuthUser]: ...

    @abstractmethod
    async def count_users(self) -> int: ...

    @abstractmethod
    async def delete_user(self, uuid: str) -> bool: ...
