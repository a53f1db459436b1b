"""User-visible error taxonomy shared by the auth core and the HTTP surface."""

from __future__ import annotations

from enum import StrEnum
from http import HTTPStatus


class ErrorKind(StrEnum):
    BAD_REQUEST = "BAD_REQUEST"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    USER_NOT_ALLOWED_TO_SIGN_IN = "USER_NOT_ALLOWED_TO_SIGN_IN"
    WRONG_TOKEN_TYPE = "WRONG_TOKEN_TYPE"
    TOKEN_INVALID = "TOKEN_INVALID"
    INSUFFICIENT_ROLE = "INSUFFICIENT_ROLE"
    USER_EXISTS = "USER_EXISTS"
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"
    INTERNAL = "INTERNAL"


STATUS_BY_KIND: dict[ErrorKind, HTTPStatus] = {
    ErrorKind.BAD_REQUEST: HTTPStatus.BAD_REQUEST,
    ErrorKind.INVALID_CREDENTIALS: HTTPStatus.UNAUTHORIZED,
    ErrorKind.EMAIL_NOT_VERIFIED: HTTPStatus.FORBIDDEN,
    ErrorKind.USER_NOT_ALLOWED_TO_SIGN_IN: HTTPStatus.FORBIDDEN,
    ErrorKind.WRONG_TOKEN_TYPE: HTTPStatus.UNAUTHORIZED,
    ErrorKind.TOKEN_INVALID: HTTPStatus.UNAUTHORIZED,
    ErrorKind.INSUFFICIENT_ROLE: HTTPStatus.FORBIDDEN,
    ErrorKind.USER_EXISTS: HTTPStatus.CONFLICT,
    ErrorKind.NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrorKind.UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
    ErrorKind.INTERNAL: HTTPStatus.INTERNAL_SERVER_ERROR,
}

INVALID_CREDENTIALS_MESSAGE = "invalid credentials"
INTERNAL_MESSAGE = "internal server error"


class ApiError(Exception):
    """An error that is safe to show to the client.

    ``status_code`` is the metadata tag used by error collection; when a caller
    does not provide one it is derived from the kind.
    """

    def __init__(self, kind: ErrorKind, message: str = "", status_code: int | None = None) -> None:
        if kind == ErrorKind.INVALID_CREDENTIALS:
            message = INVALID_CREDENTIALS_MESSAGE
        elif kind == ErrorKind.INTERNAL:
            message = INTERNAL_MESSAGE
        super().__init__(message or kind.value.lower().replace("_", " "))
        self.kind = kind
        self.message = str(self)
        self.status_code = status_code if status_code is not None else int(STATUS_BY_KIND[kind])

    def to_body(self) -> dict[str, str]:
        return {"code": self.kind.value, "message": self.message}

    def __repr__(self) -> str:
        return f"ApiError({self.kind.value}, {self.message!r}, {self.status_code})"


def bad_request(message: str) -> ApiError:
    return ApiError(ErrorKind.BAD_REQUEST, message)


def invalid_credentials() -> ApiError:
    return ApiError(ErrorKind.INVALID_CREDENTIALS)


def token_invalid(message: str = "invalid token") -> ApiError:
    return ApiError(ErrorKind.TOKEN_INVALID, message)


def wrong_token_type(actual: str, expected: str) -> ApiError:
    return ApiError(ErrorKind.WRONG_TOKEN_TYPE, f"wrong token type: {actual}, should be {expected}")
