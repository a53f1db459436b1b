"""Tests for response rendering and request body parsing."""

import pytest
from pydantic import BaseModel, Field
from starlette.requests import Request

from gateway.responses import data_response, error_response, ok_response, read_json
from identity.errors import ApiError, ErrorKind
from identity.models import UserSnapshot


class _Page(BaseModel):
    offset: int = 0
    records: int = Field(default=100, le=1000)


def _request(body: bytes) -> Request:
    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    scope = {"type": "http", "method": "POST", "path": "/", "headers": [], "query_string": b""}
    return Request(scope, receive)


class TestReadJson:
    async def test_empty_body_is_empty_object(self):
        assert await read_json(_request(b"  "), _Page) == _Page()

    async def test_parses_fields(self):
        page = await read_json(_request(b'{"offset": 5, "records": 10}'), _Page)
        assert (page.offset, page.records) == (5, 10)

    @pytest.mark.parametrize(
        ("body", "message"),
        [
            (b"{nope", "invalid JSON body"),
            (b"[1, 2]", "JSON body must be an object"),
            (b'"text"', "JSON body must be an object"),
        ],
    )
    async def test_rejects_malformed_bodies(self, body, message):
        with pytest.raises(ApiError) as exc_info:
            await read_json(_request(body), _Page)
        assert exc_info.value.kind == ErrorKind.BAD_REQUEST
        assert exc_info.value.message == message

    async def test_validation_message_names_field(self):
        with pytest.raises(ApiError) as exc_info:
            await read_json(_request(b'{"records": 5000}'), _Page)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message.startswith("records: ")


class TestResponses:
    def test_data_response_dumps_models_by_alias(self):
        user = UserSnapshot(uuid="u", username="a", email="a@example.com", first_name="A")

        response = data_response(user, "user")

        assert response.status_code == 200
        assert b'"firstName":"A"' in response.body
        assert b'"message":"user"' in response.body

    def test_ok_response(self):
        assert ok_response("done").body == b'{"message":"done","data":null}'

    def test_error_response(self):
        response = error_response(ApiError(ErrorKind.USER_EXISTS, "taken"))

        assert response.status_code == 409
        assert response.body == b'{"code":"USER_EXISTS","message":"taken"}'
