"""User administration. Every route here requires an ACCESS token carrying ADMIN."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gateway.auth import request_auth
from gateway.responses import data_response, ok_response, read_json
from gateway.views.user_handlers import user_record
from identity.errors import bad_request

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from identity.service import AuthService

logger = structlog.get_logger()

MAX_PAGE_RECORDS = 1000


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ListUsersBody(_Body):
    offset: int = Field(default=0, ge=0)
    records: int = Field(default=100, ge=1, le=MAX_PAGE_RECORDS)
    query: str = ""


class AddUserBody(_Body):
    username: str = ""
    email: str
    password: str = ""
    first_name: str = ""
    roles: list[str] = Field(default_factory=list)
    email_is_verified: bool = True


class UpdateUserBody(_Body):
    uuid: str
    username: str = ""
    email: str = ""
    first_name: str | None = None
    password: str = ""
    roles: list[str] | None = None
    email_is_verified: bool | None = None


class UserRefBody(_Body):
    uuid: str


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _admin_uuid(request: Request) -> str:
    claims = request_auth(request).claims
    return claims.user_id if claims is not None else ""


async def list_roles(request: Request) -> Response:
    """GET /admin/roles"""
    return data_response(await _service(request).directory.all_roles())


async def list_users(request: Request) -> Response:
    """POST /admin/users - a page of users, optionally filtered by username or email."""
    body = await read_json(request, ListUsersBody)
    service = _service(request)
    users = await service.directory.list_users(offset=body.offset, limit=body.records, query=body.query)
    return data_response([await user_record(service, user) for user in users])


async def user_stats(request: Request) -> Response:
    """GET /admin/users/stats"""
    return data_response({"users": await _service(request).directory.count_users()})


async def add_user(request: Request) -> Response:
    """POST /admin/users/add - create an account with explicit roles."""
    body = await read_json(request, AddUserBody)
    service = _service(request)
    user = await service.add_user(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        roles=body.roles,
        verified=body.email_is_verified,
    )
    logger.info("admin added user", user_uuid=user.uuid, admin_uuid=_admin_uuid(request))
    return data_response(await user_record(service, user), "user added")


async def update_user(request: Request) -> Response:
    """POST /admin/users/update - change any of a user's fields and roles."""
    body = await read_json(request, UpdateUserBody)
    service = _service(request)
    user = await service.require_user(body.uuid)

    if body.username or body.first_name is not None:
        user = await service.update_profile(user, username=body.username, first_name=body.first_name)
    if body.email and body.email.lower() != user.email.lower():
        user = await service.change_email(user, body.email)
    if body.email_is_verified and not user.is_verified:
        user = await service.verify_email(user)
    if body.password:
        user = await service.set_password(user, body.password)
    if body.roles is not None:
        await service.set_roles(user, body.roles)

    logger.info("admin updated user", user_uuid=user.uuid, admin_uuid=_admin_uuid(request))
    return data_response(await user_record(service, user), "user updated")


async def delete_user(request: Request) -> Response:
    """DELETE /admin/users/delete/{uuid}"""
    uuid = request.path_params["uuid"]
    if uuid == _admin_uuid(request):
        raise bad_request("cannot delete your own account")
    await _service(request).delete_user(uuid)
    return ok_response("user deleted")


async def issue_api_key(request: Request) -> Response:
    """POST /admin/users/apikey - issue a new API key, replacing any previous one.

    The raw key is only ever returned here.
    """
    body = await read_json(request, UserRefBody)
    service = _service(request)
    user, raw_key = await service.issue_api_key(await service.require_user(body.uuid))
    return data_response({"uuid": user.uuid, "apiKey": raw_key}, "api key issued")
