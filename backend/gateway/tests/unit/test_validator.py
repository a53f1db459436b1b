"""Tests for the per-request validation pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import httpx
import pytest
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route

from gateway.auth.guards import guarded, jwt_user, public_route
from gateway.auth.validator import Validator
from identity.db import Database, SqliteUserDirectory
from identity.keys import KeyStore
from identity.models import TokenKind
from identity.password import SimpleHasher
from identity.roles import RDF, SIGNIN
from identity.service import AuthService
from identity.tokens import TokenCodec, derive_otp

if TYPE_CHECKING:
    from pathlib import Path

    from starlette.requests import Request


async def _granted(validator: Validator) -> JSONResponse:
    return JSONResponse({"uuid": validator.user.uuid, "roles": validator.role_claim})


async def _signin(request: Request) -> JSONResponse:
    return await (
        Validator(request)
        .parse_login_request_body()
        .load_auth_user_from_username()
        .check_password()
        .check_user_has_verified_email_address()
        .check_user_can_sign_in()
        .success(_granted)
    )


async def _redeem(request: Request) -> JSONResponse:
    return await (
        Validator(request)
        .check_token_kind(TokenKind.VERIFY_EMAIL)
        .load_auth_user_from_token()
        .check_otp_valid()
        .success(_granted)
    )


@pytest.fixture
def hasher():
    return SimpleHasher()


@pytest.fixture
def service(tmp_path: Path, hasher):
    db = Database(tmp_path / "test.db")
    db.connect()
    yield AuthService(SqliteUserDirectory(db), password_hasher=hasher, default_roles=[SIGNIN])
    db.close()


@pytest.fixture
def codec(auth_settings):
    return TokenCodec(KeyStore.load(auth_settings), auth_settings)


@pytest.fixture
def app(service, codec):
    app = Starlette(
        routes=[
            Route("/signin", public_route(_signin), methods=["POST"]),
            Route("/redeem", guarded(jwt_user)(_redeem), methods=["POST"]),
        ],
    )
    app.state.auth_service = service
    app.state.token_codec = codec
    return app


@pytest.fixture
async def http(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://testserver") as client:
        yield client


class TestLoginChain:
    async def test_full_chain(self, http, service):
        user = await service.add_user(username="ann", email="ann@example.com", password="pw", roles=[SIGNIN, RDF])

        response = await http.post("/signin", json={"username": "ann", "password": "pw"})

        assert response.status_code == 200
        assert response.json() == {"uuid": user.uuid, "roles": "RDF SIGNIN"}

    async def test_email_lookup(self, http, service):
        user = await service.add_user(username="ann", email="ann@example.com", password="pw", roles=[SIGNIN])

        response = await http.post("/signin", json={"email": "ann@example.com", "password": "pw"})

        assert response.json()["uuid"] == user.uuid

    async def test_username_wins_over_email(self, http, service):
        ann = await service.add_user(username="ann", email="ann@example.com", password="pw", roles=[SIGNIN])
        await service.add_user(username="bob", email="bob@example.com", password="pw", roles=[SIGNIN])

        response = await http.post("/signin", json={"username": "ann", "email": "bob@example.com", "password": "pw"})

        assert response.json()["uuid"] == ann.uuid

    async def test_first_error_is_sticky(self, http, service, monkeypatch):
        await service.add_user(username="ann", email="ann@example.com", password="pw", roles=[SIGNIN])
        spy = AsyncMock(wraps=service.sign_in_claim)
        monkeypatch.setattr(service, "sign_in_claim", spy)

        response = await http.post("/signin", json={"username": "ann", "password": "WRONG"})

        assert response.status_code == 401
        assert response.json() == {"code": "INVALID_CREDENTIALS", "message": "invalid credentials"}
        spy.assert_not_awaited()

    async def test_unverified_user(self, http, service):
        await service.add_user(username="ann", email="ann@example.com", password="pw", roles=[SIGNIN], verified=False)

        response = await http.post("/signin", json={"username": "ann", "password": "pw"})

        assert response.status_code == 403
        assert response.json()["code"] == "EMAIL_NOT_VERIFIED"

    async def test_user_without_signin_role(self, http, service):
        await service.add_user(username="ann", email="ann@example.com", password="pw", roles=[RDF])

        response = await http.post("/signin", json={"username": "ann", "password": "pw"})

        assert response.status_code == 403
        assert response.json()["code"] == "USER_NOT_ALLOWED_TO_SIGN_IN"

    async def test_missing_identifier(self, http):
        response = await http.post("/signin", json={"password": "pw"})

        assert response.status_code == 400
        assert response.json() == {"code": "BAD_REQUEST", "message": "username or email is required"}

    async def test_invalid_json(self, http):
        response = await http.post("/signin", content=b"{nope", headers={"content-type": "application/json"})

        assert response.status_code == 400
        assert response.json()["message"] == "invalid JSON body"

    async def test_unknown_user_burns_a_hash(self, http, hasher, monkeypatch):
        burn = AsyncMock()
        monkeypatch.setattr(hasher, "burn", burn)

        response = await http.post("/signin", json={"username": "ghost", "password": "pw"})

        assert response.status_code == 401
        assert response.json()["message"] == "invalid credentials"
        burn.assert_awaited_once_with("pw")


class TestTokenChain:
    async def test_valid_otp(self, http, service, codec):
        user = await service.add_user(username="ann", email="ann@example.com", roles=[SIGNIN], verified=False)
        token = codec.mint(TokenKind.VERIFY_EMAIL, user.uuid, otp=derive_otp(user))

        response = await http.post("/redeem", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["uuid"] == user.uuid

    async def test_stale_otp(self, http, service, codec):
        user = await service.add_user(username="ann", email="ann@example.com", roles=[SIGNIN], verified=False)
        token = codec.mint(TokenKind.VERIFY_EMAIL, user.uuid, otp=derive_otp(user))
        await service.verify_email(user)

        response = await http.post("/redeem", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json() == {"code": "TOKEN_INVALID", "message": "invalid one-time passcode"}

    async def test_wrong_kind(self, http, service, codec):
        user = await service.add_user(username="ann", email="ann@example.com", roles=[SIGNIN])
        token = codec.mint(TokenKind.ACCESS, user.uuid, roles=SIGNIN)

        response = await http.post("/redeem", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["code"] == "WRONG_TOKEN_TYPE"

    async def test_unknown_user(self, http, codec):
        token = codec.mint(TokenKind.VERIFY_EMAIL, "ghost", otp="x")

        response = await http.post("/redeem", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["message"] == "user not found"
