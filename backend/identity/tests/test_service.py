"""Tests for AuthService."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from identity.db import Database, SqliteUserDirectory
from identity.errors import ApiError, ErrorKind
from identity.models import FederatedClaims
from identity.password import SimpleHasher, hash_api_key
from identity.service import AuthService

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def directory(tmp_path: Path):
    db = Database(tmp_path / "test.db")
    db.connect()
    yield SqliteUserDirectory(db)
    db.close()


@pytest.fixture
def service(directory):
    return AuthService(directory, password_hasher=SimpleHasher(), default_roles=["SIGNIN"])


def _federated(email: str = "fed@example.com", *, verified: bool = True) -> FederatedClaims:
    return FederatedClaims(
        sub=f"idp|{email}",
        email=email,
        email_verified=verified,
        name="Fed User",
        issuer="https://idp.test/",
        expires_at="2030-01-01T00:00:00Z",
    )


def _kind(exc_info) -> ErrorKind:
    return exc_info.value.kind


class TestSignup:
    async def test_creates_unverified_user_with_default_roles(self, service):
        user, created = await service.signup(username="alice", email="alice@example.com", password="p1")

        assert created
        assert not user.is_verified
        assert user.password_hash.startswith("simple$")
        assert await service.role_claim(user) == "SIGNIN"

    async def test_username_defaults_to_email(self, service):
        user, _ = await service.signup(username="", email="bob@example.com")

        assert user.username == "bob@example.com"
        assert user.password_hash == ""

    async def test_repeat_for_unverified_email_returns_existing(self, service):
        first, _ = await service.signup(username="alice", email="alice@example.com", password="p1")

        again, created = await service.signup(username="other", email="ALICE@example.com", password="p2")

        assert not created
        assert again.uuid == first.uuid
        assert again.password_hash == first.password_hash

    async def test_repeat_for_verified_email_conflicts(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com", password="p1")
        await service.verify_email(user)

        with pytest.raises(ApiError) as exc_info:
            await service.signup(username="alice2", email="alice@example.com", password="p1")
        assert _kind(exc_info) == ErrorKind.USER_EXISTS
        assert exc_info.value.status_code == 409

    async def test_taken_username_conflicts(self, service):
        await service.signup(username="alice", email="alice@example.com")

        with pytest.raises(ApiError) as exc_info:
            await service.signup(username="Alice", email="different@example.com")
        assert _kind(exc_info) == ErrorKind.USER_EXISTS

    @pytest.mark.parametrize(
        ("username", "email", "password"),
        [
            ("alice", "not-an-email", "p1"),
            ("has space", "alice@example.com", "p1"),
            ("alice", "alice@example.com", "あ" * 25),
        ],
    )
    async def test_validation(self, service, username, email, password):
        with pytest.raises(ApiError) as exc_info:
            await service.signup(username=username, email=email, password=password)
        assert _kind(exc_info) == ErrorKind.BAD_REQUEST


class TestCredentials:
    async def test_check_password(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com", password="p1")

        assert await service.check_password(user, "p1") == user
        with pytest.raises(ApiError) as exc_info:
            await service.check_password(user, "wrong")
        assert _kind(exc_info) == ErrorKind.INVALID_CREDENTIALS

    async def test_unknown_user_same_error(self, service):
        with pytest.raises(ApiError) as exc_info:
            await service.check_password(None, "anything")
        assert _kind(exc_info) == ErrorKind.INVALID_CREDENTIALS
        assert exc_info.value.message == "invalid credentials"

    async def test_passwordless_account_never_matches(self, service):
        user, _ = await service.signup(username="bob", email="bob@example.com")

        with pytest.raises(ApiError):
            await service.check_password(user, "")

    async def test_set_password(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com", password="p1")

        updated = await service.set_password(user, "p2")

        assert await service.check_password(updated, "p2")
        with pytest.raises(ApiError):
            await service.check_password(updated, "p1")

    async def test_set_password_rejects_empty(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com", password="p1")

        with pytest.raises(ApiError) as exc_info:
            await service.set_password(user, "")
        assert _kind(exc_info) == ErrorKind.BAD_REQUEST

    async def test_sign_in_claim_requires_signin_role(self, service, directory):
        user, _ = await service.signup(username="alice", email="alice@example.com")
        await directory.set_roles(user.uuid, ["RDF"])

        with pytest.raises(ApiError) as exc_info:
            await service.sign_in_claim(user)
        assert _kind(exc_info) == ErrorKind.USER_NOT_ALLOWED_TO_SIGN_IN


class TestLookup:
    async def test_username_wins_over_email(self, service):
        alice, _ = await service.signup(username="alice", email="alice@example.com")
        await service.signup(username="bob", email="bob@example.com")

        found = await service.find_user(username="alice", email="bob@example.com")

        assert found is not None
        assert found.uuid == alice.uuid

    async def test_neither_given(self, service):
        assert await service.find_user() is None

    async def test_require_user_missing(self, service):
        with pytest.raises(ApiError) as exc_info:
            await service.require_user("ghost")
        assert _kind(exc_info) == ErrorKind.NOT_FOUND


class TestEmail:
    async def test_verify_is_idempotent(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com")

        first = await service.verify_email(user)
        second = await service.verify_email(first)

        assert first.email_verified_at > 0
        assert second.email_verified_at == first.email_verified_at

    async def test_change_email_resets_verification(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com")
        user = await service.verify_email(user)

        changed = await service.change_email(user, "new@example.com")

        assert changed.email == "new@example.com"
        assert not changed.is_verified

    async def test_change_email_to_taken_address(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com")
        await service.signup(username="bob", email="bob@example.com")

        with pytest.raises(ApiError) as exc_info:
            await service.change_email(user, "BOB@example.com")
        assert _kind(exc_info) == ErrorKind.USER_EXISTS


class TestFederated:
    async def test_creates_verified_user(self, service):
        user = await service.provision_federated(_federated())

        assert user.email == "fed@example.com"
        assert user.is_verified
        assert user.first_name == "Fed User"
        assert await service.role_claim(user) == "SIGNIN"

    async def test_maps_existing_user_by_email(self, service):
        existing, _ = await service.signup(username="fed", email="fed@example.com")

        user = await service.provision_federated(_federated("FED@example.com"))

        assert user.uuid == existing.uuid
        assert user.is_verified

    async def test_unverified_federated_email_rejected(self, service):
        with pytest.raises(ApiError) as exc_info:
            await service.provision_federated(_federated(verified=False))
        assert _kind(exc_info) == ErrorKind.EMAIL_NOT_VERIFIED
        assert await service.find_user(email="fed@example.com") is None

    async def test_missing_email_rejected(self, service):
        with pytest.raises(ApiError) as exc_info:
            await service.provision_federated(_federated(email=""))
        assert _kind(exc_info) == ErrorKind.TOKEN_INVALID


class TestApiKeys:
    async def test_issue_and_lookup(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com")

        updated, raw_key = await service.issue_api_key(user)

        assert updated.api_key_hash == hash_api_key(raw_key)
        found = await service.user_for_api_key(raw_key)
        assert found is not None
        assert found.uuid == user.uuid

    async def test_reissue_revokes_previous_key(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com")
        _, first_key = await service.issue_api_key(user)
        _, second_key = await service.issue_api_key(user)

        assert await service.user_for_api_key(first_key) is None
        assert await service.user_for_api_key(second_key) is not None

    async def test_empty_key(self, service):
        assert await service.user_for_api_key("") is None


class TestAdmin:
    async def test_add_user_with_roles(self, service):
        user = await service.add_user(username="root", email="root@example.com", password="pw", roles=["ADMIN"])

        assert user.is_verified
        assert await service.role_claim(user) == "ADMIN"

    async def test_add_user_unknown_role(self, service):
        with pytest.raises(ApiError) as exc_info:
            await service.add_user(username="root", email="root@example.com", roles=["WIZARD"])
        assert _kind(exc_info) == ErrorKind.BAD_REQUEST

    async def test_delete_user(self, service):
        user, _ = await service.signup(username="alice", email="alice@example.com")

        await service.delete_user(user.uuid)

        assert await service.get_user(user.uuid) is None
        with pytest.raises(ApiError) as exc_info:
            await service.delete_user(user.uuid)
        assert _kind(exc_info) == ErrorKind.NOT_FOUND
