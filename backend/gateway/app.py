from __future__ import annotations

import contextlib
from http import HTTPStatus
from typing import TYPE_CHECKING, cast

import structlog
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from gateway.auth import (
    guarded,
    has_role,
    is_admin,
    jwt_federated,
    jwt_user,
    public_route,
    session_valid,
    token_kind,
    validate_route_auth_policy,
)
from gateway.middleware import ErrorCollectionMiddleware, RecoveryMiddleware, RequestLogMiddleware, SessionMiddleware
from gateway.modules import RDF_MODULE_ROUTES, HttpModuleBackend
from gateway.responses import error_response
from gateway.settings import GatewaySettings
from gateway.views import admin_handlers, auth_handlers, session_handlers, token_handlers, user_handlers
from gateway.views.module_handlers import list_modules, proxy, public_proxy
from gateway.views.ops import about, info, ping
from gateway.views.utils_handlers import hash_password, random_key
from identity.db import Database, SqliteUserDirectory
from identity.errors import ApiError, ErrorKind
from identity.keys import KeyStore
from identity.logging import setup_logging
from identity.mail import EmailQueue, MemoryEmailPublisher, RedisEmailPublisher
from identity.models import TokenKind
from identity.password import get_hasher
from identity.roles import RDF
from identity.service import AuthService
from identity.sessions import SessionStore
from identity.settings import AuthSettings
from identity.tokens import TokenCodec

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request
    from starlette.responses import Response

    from gateway.modules import ModuleBackend
    from identity.mail import EmailPublisher

ACCESS = (jwt_user, token_kind(TokenKind.ACCESS))
ADMIN = (*ACCESS, is_admin)
RDF_ACCESS = (*ACCESS, has_role(RDF))

MODULE_METHODS = ["GET", "POST"]
CORS_PREFLIGHT_MAX_AGE = 12 * 60 * 60


def build_routes() -> list[Route]:
    return [
        # Ops
        Route("/about", public_route(about), methods=["GET"], name="about"),
        Route("/info", public_route(info), methods=["GET"], name="info"),
        Route("/ping", public_route(ping), methods=["GET"], name="ping"),
        # Bearer-token auth
        Route("/signup", public_route(auth_handlers.signup), methods=["POST"], name="signup"),
        Route("/auth/signin", public_route(auth_handlers.signin), methods=["POST"], name="signin"),
        Route(
            "/auth/email/verified",
            guarded(jwt_user, token_kind(TokenKind.VERIFY_EMAIL))(auth_handlers.verify_email),
            methods=["POST"],
            name="verify_email",
        ),
        Route("/auth/email/reset", guarded(*ACCESS)(auth_handlers.reset_email), methods=["POST"], name="reset_email"),
        Route(
            "/auth/email/update",
            guarded(jwt_user, token_kind(TokenKind.CHANGE_EMAIL))(auth_handlers.update_email),
            methods=["POST"],
            name="update_email",
        ),
        Route(
            "/auth/passwords/reset",
            public_route(auth_handlers.reset_password),
            methods=["POST"],
            name="reset_password",
        ),
        Route(
            "/auth/passwords/update",
            guarded(jwt_user, token_kind(TokenKind.RESET_PASSWORD))(auth_handlers.update_password),
            methods=["POST"],
            name="update_password",
        ),
        Route(
            "/auth/passwordless/email",
            public_route(auth_handlers.passwordless_email),
            methods=["POST"],
            name="passwordless_email",
        ),
        Route(
            "/auth/passwordless/signin",
            guarded(jwt_user, token_kind(TokenKind.PASSWORDLESS))(auth_handlers.passwordless_signin),
            methods=["POST"],
            name="passwordless_signin",
        ),
        Route("/auth/tokens/info", guarded(jwt_user)(token_handlers.token_info), methods=["POST"], name="token_info"),
        Route(
            "/auth/tokens/access",
            guarded(jwt_user)(token_handlers.new_access_token),
            methods=["POST"],
            name="new_access_token",
        ),
        Route(
            "/auth/auth0/validate",
            guarded(jwt_federated)(token_handlers.federated_validate),
            methods=["POST"],
            name="federated_validate",
        ),
        Route("/auth/users", guarded(*ACCESS)(user_handlers.get_user), methods=["POST"], name="get_user"),
        Route(
            "/auth/users/update",
            guarded(*ACCESS)(user_handlers.update_user),
            methods=["POST"],
            name="update_user",
        ),
        # Cookie sessions
        Route("/sessions/auth/signin", public_route(session_handlers.signin), methods=["POST"], name="session_signin"),
        Route(
            "/sessions/auth0/signin",
            guarded(jwt_federated)(session_handlers.federated_signin),
            methods=["POST"],
            name="session_federated_signin",
        ),
        Route(
            "/sessions/auth/passwordless/validate",
            guarded(jwt_user, token_kind(TokenKind.PASSWORDLESS))(session_handlers.passwordless_validate),
            methods=["POST"],
            name="session_passwordless_validate",
        ),
        Route(
            "/sessions/api/keys/signin",
            public_route(session_handlers.api_key_signin),
            methods=["POST"],
            name="session_api_key_signin",
        ),
        Route("/sessions/info", public_route(session_handlers.session_info), methods=["GET"], name="session_info"),
        Route("/sessions/signout", public_route(session_handlers.signout), methods=["POST"], name="session_signout"),
        Route(
            "/sessions/refresh",
            guarded(session_valid)(session_handlers.refresh),
            methods=["POST"],
            name="session_refresh",
        ),
        Route(
            "/sessions/tokens/access",
            guarded(session_valid)(session_handlers.new_access_token),
            methods=["POST"],
            name="session_access_token",
        ),
        Route("/sessions/user", guarded(session_valid)(session_handlers.get_user), methods=["GET"], name="session_user"),
        Route(
            "/sessions/user/update",
            guarded(session_valid)(session_handlers.update_user),
            methods=["POST"],
            name="session_update_user",
        ),
        # Admin
        Route("/admin/roles", guarded(*ADMIN)(admin_handlers.list_roles), methods=["GET"], name="admin_roles"),
        Route("/admin/users", guarded(*ADMIN)(admin_handlers.list_users), methods=["POST"], name="admin_users"),
        Route(
            "/admin/users/stats",
            guarded(*ADMIN)(admin_handlers.user_stats),
            methods=["GET"],
            name="admin_user_stats",
        ),
        Route(
            "/admin/users/update",
            guarded(*ADMIN)(admin_handlers.update_user),
            methods=["POST"],
            name="admin_update_user",
        ),
        Route("/admin/users/add", guarded(*ADMIN)(admin_handlers.add_user), methods=["POST"], name="admin_add_user"),
        Route(
            "/admin/users/delete/{uuid}",
            guarded(*ADMIN)(admin_handlers.delete_user),
            methods=["DELETE"],
            name="admin_delete_user",
        ),
        Route(
            "/admin/users/apikey",
            guarded(*ADMIN)(admin_handlers.issue_api_key),
            methods=["POST"],
            name="admin_issue_api_key",
        ),
        # Utils
        Route("/utils/passwords/hash", public_route(hash_password), methods=["GET"], name="hash_password"),
        Route("/utils/randkey", public_route(random_key), methods=["GET"], name="random_key"),
        # Genomics modules; the RDF-gated groups must precede the public catch-all
        Route("/modules", public_route(list_modules), methods=["GET"], name="list_modules"),
        *(
            Route(path, guarded(*RDF_ACCESS)(proxy), methods=MODULE_METHODS, name=name) for name, path in RDF_MODULE_ROUTES
        ),
        Route("/modules/{module}/{path:path}", public_route(public_proxy), methods=MODULE_METHODS, name="module_proxy"),
    ]


async def _http_error_handler(_request: Request, exc: Exception) -> Response:
    """Render routing errors (unknown path, wrong method) in the JSON error shape."""
    http_exc = cast("HTTPException", exc)
    kind = ErrorKind.NOT_FOUND if http_exc.status_code == HTTPStatus.NOT_FOUND else ErrorKind.BAD_REQUEST
    return error_response(ApiError(kind, http_exc.detail, status_code=http_exc.status_code))


def _email_publisher(settings: GatewaySettings) -> EmailPublisher:
    if not settings.redis_addr:
        logger.warning("REDIS_ADDR not set, emails are kept in memory and not delivered")
        return MemoryEmailPublisher()
    return RedisEmailPublisher(
        settings.redis_addr,
        settings.email_queue_channel,
        username=settings.redis_username,
        password=settings.redis_password,
    )


def create_app(
    settings: GatewaySettings | None = None,
    auth_settings: AuthSettings | None = None,  # required in production (via get_app)
    *,
    keys: KeyStore | None = None,
    module_backend: ModuleBackend | None = None,
    email_publisher: EmailPublisher | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = GatewaySettings()
    if auth_settings is None:  # pragma: no cover
        auth_settings = AuthSettings()  # type: ignore[call-arg]
    if keys is None:
        keys = KeyStore.load(auth_settings)

    routes = build_routes()
    validate_route_auth_policy(routes)

    db = Database(auth_settings.database_path)
    db.connect()
    hasher = get_hasher(auth_settings.password_hasher)
    auth_service = AuthService(
        SqliteUserDirectory(db),
        password_hasher=hasher,
        default_roles=auth_settings.default_roles,
    )
    session_store = SessionStore(auth_settings)
    email_queue = EmailQueue(
        email_publisher or _email_publisher(settings),
        deadline_secs=settings.dependency_timeout_secs,
    )
    if module_backend is None:
        module_backend = HttpModuleBackend(
            settings.module_upstreams,
            config_path=settings.modules_config_path,
            timeout=settings.dependency_timeout_secs,
        )

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        yield
        await email_queue.close()
        db.close()

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={HTTPException: _http_error_handler},
    )
    # add_middleware prepends, so the last one added is outermost
    app.add_middleware(SessionMiddleware, session_store=session_store)  # type: ignore[arg-type]
    app.add_middleware(ErrorCollectionMiddleware)  # type: ignore[arg-type]
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Origin", "Content-Type", "Authorization"],
        allow_credentials=True,
        max_age=CORS_PREFLIGHT_MAX_AGE,
    )
    app.add_middleware(RequestLogMiddleware)  # type: ignore[arg-type]
    app.add_middleware(RecoveryMiddleware)  # type: ignore[arg-type]

    app.state.db = db
    app.state.settings = settings
    app.state.auth_settings = auth_settings
    app.state.keys = keys
    app.state.token_codec = TokenCodec(keys, auth_settings)
    app.state.password_hasher = hasher
    app.state.auth_service = auth_service
    app.state.session_store = session_store
    app.state.email_queue = email_queue
    app.state.module_backend = module_backend

    logger.info("gateway ready", version=settings.version, modules=sorted(module_backend.upstreams()))
    return app


def get_app() -> Starlette:  # pragma: no cover
    """Factory function for uvicorn --factory gateway.app:get_app."""
    s = GatewaySettings()
    auth = AuthSettings()  # ty: ignore[missing-argument]
    setup_logging(log_dir=s.log_dir, app_env=s.app_env)
    return create_app(settings=s, auth_settings=auth)
