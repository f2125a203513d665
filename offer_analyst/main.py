"""
Main application entry point for Offer Analyst.

Wires together:
- Configuration from the environment
- SQLite key store and migrations
- Key encryption, resolution and management
- Dashboard API
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .byok import (
    ApiKeyManager,
    ApiKeyResolver,
    EnvFallbackConfig,
    IdentityContextMiddleware,
    JWTIdentityProvider,
    ProviderKeyValidator,
    SecretCipher,
)
from .config import AppConfig, ConfigValidator, EnvironmentLoader, LogLevel
from .dashboard.auth import DashboardAuth
from .dashboard.router import setup_dashboard_api
from .dashboard.routes import set_services
from .data import MigrationRunner, initialize_repositories
from .exceptions import ConfigurationError, KeyNotFoundError, OfferAnalystError

logger = logging.getLogger(__name__)


def setup_logging(level: LogLevel = LogLevel.INFO, log_file: Optional[str] = "data/offeranalyst.log") -> None:
    """Configure root logging. The file handler is optional (may fail if not writable)."""
    log_handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_handlers.append(logging.FileHandler(str(log_path)))
        except (OSError, PermissionError):
            # File logging not available, use stdout only
            pass

    logging.basicConfig(
        level=level.value,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=log_handlers
    )


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Application configuration (loaded from the environment if omitted)

    Returns:
        Configured FastAPI app

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    config = config or EnvironmentLoader.load_config()

    errors = ConfigValidator.validate_config(config)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise ConfigurationError("Invalid configuration", {"errors": errors})

    factory = initialize_repositories(
        backend="sqlite",
        db_path=config.database_config.path,
        pool_size=config.database_config.pool_size,
    )
    cipher = SecretCipher(config.encryption_secret)
    auth = DashboardAuth(
        jwt_secret=config.auth_config.jwt_secret,
        jwt_expiration_hours=config.auth_config.jwt_expiration_hours,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Offer Analyst key service starting up")

        connection = await factory.get_connection()
        applied = await MigrationRunner(connection).run()
        logger.info(f"Database ready ({applied} migrations applied)")

        if not cipher.self_test():
            raise ConfigurationError("Key encryption self-test failed")

        key_store = await factory.get_api_key_repository()
        resolver = ApiKeyResolver(
            key_store=key_store,
            cipher=cipher,
            identity_provider=JWTIdentityProvider(auth),
            fallback=EnvFallbackConfig(),
            window=timedelta(minutes=config.usage_window_minutes),
        )
        app.state.key_resolver = resolver
        app.state.key_manager = ApiKeyManager(
            key_store,
            cipher,
            alert_store=await factory.get_security_alert_repository(),
        )
        app.state.key_validator = ProviderKeyValidator(timeout=config.key_check_timeout)

        set_services(
            key_resolver=resolver,
            key_manager=app.state.key_manager,
            key_validator=app.state.key_validator,
            rotation_days=config.key_rotation_days,
        )

        yield

        # Shutdown
        logger.info("Offer Analyst key service shutting down")
        await resolver.wait_for_pending()
        set_services()
        await factory.close()

    app = FastAPI(
        title="Offer Analyst Key Service",
        description="Provider key resolution and BYOK key management",
        version=__version__,
        lifespan=lifespan
    )
    app.state.repository_factory = factory
    app.state.auth = auth

    if config.server_config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.server_config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(IdentityContextMiddleware)

    # Services are bound in lifespan; until then the routes answer 503
    setup_dashboard_api(app, auth, rotation_days=config.key_rotation_days)
    _setup_error_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": __version__}

    return app


def _setup_error_handlers(app: FastAPI) -> None:
    """Configure global error handlers."""

    @app.exception_handler(OfferAnalystError)
    async def domain_error_handler(request, exc: OfferAnalystError):
        """Handle domain errors not mapped by a route."""
        status_code = 404 if isinstance(exc, KeyNotFoundError) else 400
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.to_dict()},
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request, exc: Exception):
        """Handle unexpected errors."""
        logger.error(f"Unhandled error in API endpoint: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "An unexpected error occurred",
                }
            },
        )


def main() -> None:
    """Run the service under uvicorn."""
    import uvicorn

    config = EnvironmentLoader.load_config()
    setup_logging(config.log_level)
    app = create_app(config)
    uvicorn.run(app, host=config.server_config.host, port=config.server_config.port, log_level="info")
