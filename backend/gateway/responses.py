"""JSON response shapes and request-body parsing shared by all views.

Success: ``{"message": ..., "data": ...}``. Failure: ``{"code": ..., "message": ...}``.
"""

from __future__ import annotations

import json
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError
from starlette.responses import JSONResponse

from identity.errors import ApiError, bad_request

if TYPE_CHECKING:
    from starlette.requests import Request


def data_response(data: Any = None, message: str = "", status_code: int = HTTPStatus.OK) -> JSONResponse:  # noqa: ANN401
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    return JSONResponse({"message": message, "data": data}, status_code=status_code)


def ok_response(message: str) -> JSONResponse:
    return data_response(None, message)


def error_response(error: ApiError) -> JSONResponse:
    """Render an error; an untagged error defaults to 400."""
    return JSONResponse(error.to_body(), status_code=error.status_code or HTTPStatus.BAD_REQUEST)


async def read_json[M: BaseModel](request: Request, model: type[M]) -> M:
    """Parse the request body into ``model``. An empty body means ``{}``.

    Raises ApiError(BAD_REQUEST) on malformed JSON or validation failure.
    """
    raw_body = await request.body()
    if not raw_body.strip():
        payload: Any = {}
    else:
        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise bad_request("invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise bad_request("JSON body must be an object")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise bad_request(f"{location}: {first['msg']}" if location else first["msg"]) from exc
