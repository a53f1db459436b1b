"""The caller's own account record, over bearer tokens."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from gateway.auth import Validator
from gateway.responses import data_response, read_json

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from identity.models import AuthUser
    from identity.service import AuthService


class UpdateUserBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    username: str = ""
    first_name: str | None = None


async def user_record(service: AuthService, user: AuthUser) -> dict:
    """Public fields of ``user`` plus its role names."""
    return {**user.snapshot().to_json(), "roles": await service.directory.list_roles(user.uuid)}


async def get_user(request: Request) -> Response:
    """POST /auth/users - the caller's public record."""

    async def show(validator: Validator) -> Response:
        return data_response(await user_record(validator.service, validator.user))

    return await Validator(request).load_auth_user_from_token().success(show)


async def update_user(request: Request) -> Response:
    """POST /auth/users/update - change the caller's username or first name."""

    async def update(validator: Validator) -> Response:
        body = await read_json(request, UpdateUserBody)
        user = await validator.service.update_profile(
            validator.user,
            username=body.username,
            first_name=body.first_name,
        )
        return data_response(await user_record(validator.service, user), "user updated")

    return await Validator(request).load_auth_user_from_token().success(update)
