"""Run the gateway: ``python -m gateway``.

Exits 1 when settings are invalid or the signing keys cannot be loaded.
"""

import sys

import structlog
import uvicorn
from pydantic import ValidationError

from gateway.app import create_app
from gateway.settings import GatewaySettings
from identity.keys import KeyStoreError
from identity.logging import setup_logging
from identity.settings import AuthSettings

logger = structlog.get_logger()


def main() -> int:
    try:
        settings = GatewaySettings()
        auth_settings = AuthSettings()  # ty: ignore[missing-argument]
    except ValidationError as e:
        setup_logging()
        logger.error("invalid configuration", errors=e.error_count(), detail=str(e))
        return 1

    setup_logging(log_dir=settings.log_dir, app_env=settings.app_env)
    try:
        app = create_app(settings=settings, auth_settings=auth_settings)
    except KeyStoreError as e:
        logger.error("could not load signing keys", error=str(e))
        return 1

    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
