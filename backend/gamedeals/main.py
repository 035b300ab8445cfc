"""
Game Deals FastAPI Application
Wires the database, authentication and the authorization client into the API
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI
from sqlalchemy.engine import Engine

from .auth import build_authenticator
from .bootstrap import bootstrap
from .config import Settings, get_settings
from .database import build_engine, build_session_factory, create_tables
from .middleware.error_handling import install_error_handlers
from .routes.base import register_endpoints
from .routes.v1 import endpoints
from .services.authorization import AuthorizationClient, DatabasePolicyStore

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Defaults to the environment driven settings
        engine: Defaults to an engine for ``settings.database_url``, disposed
            at shutdown. A given engine is left to the caller.
    """
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level)

    owns_engine = engine is None
    engine = engine if engine is not None else build_engine(settings)
    session_factory = build_session_factory(engine)
    store = DatabasePolicyStore(session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan management."""
        logger.info(f"Starting {settings.app_name} {settings.app_version}...")
        loop = asyncio.get_event_loop()

        try:
            if settings.database_auto_migrate:
                await loop.run_in_executor(None, create_tables, engine)

            await loop.run_in_executor(None, bootstrap, session_factory, store, settings)

            # Policy errors are fatal, the API never serves without an engine
            enforcer = await app.state.authorization_client.init()
        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise

        logger.info(
            f"{settings.app_name} started with {enforcer.policy_count} access rules "
            f"and {enforcer.membership_count} role memberships"
        )

        yield

        logger.info(f"Shutting down {settings.app_name}...")
        if owns_engine:
            engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Store in app state for dependency injection
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.authenticator = build_authenticator(settings)
    app.state.authorization_client = AuthorizationClient(store)

    install_error_handlers(app, include_debug_info=settings.debug)
    register_endpoints(app, endpoints())

    return app


def main() -> None:
    """Run the development server"""
    settings = get_settings()
    uvicorn.run(
        "gamedeals.main:create_app",
        factory=True,
        host=settings.http_host,  # nosec B104 - Intentional for Docker container binding
        port=settings.http_port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
