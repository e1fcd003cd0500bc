"""
QuillAuth - credential lifecycle service.

Features:
- Registration, login, refresh rotation, logout and password reset
- Role-gated admin endpoints
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from .config import Settings, get_settings
from .container import ServiceContainer, build_container
from .logging import setup_logging, get_logger
from .api.router import router
from .middleware.correlation import CorrelationMiddleware
from .middleware.error_handler import register_error_handlers
from .middleware.metrics import MetricsMiddleware
from .middleware.validation import ValidationMiddleware
from .metrics import Metrics
from .health import HealthChecker

SERVICE_NAME = "quillauth"
VERSION = "0.1.0"


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings override; defaults to environment settings
        services: Prebuilt service container (tests)
    """
    settings = settings or get_settings()
    setup_logging(json_output=settings.LOG_JSON, service_name=SERVICE_NAME, level=settings.LOG_LEVEL)
    logger = get_logger()

    if services is None:
        metrics = Metrics(service_name=SERVICE_NAME, version=VERSION)
        services = build_container(settings, metrics=metrics)
    elif services.metrics is None:
        raise ValueError("Service container must carry a Metrics instance")
    metrics = services.metrics

    health_checker = HealthChecker(services.store, service_name=SERVICE_NAME, version=VERSION)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "service_starting",
            version=VERSION,
            env=settings.ENV,
            store=type(services.store).__name__,
            email_provider=settings.EMAIL_PROVIDER,
        )
        yield
        logger.info("service_stopping")
        metrics.app_up.labels(service=SERVICE_NAME, version=VERSION).set(0)
        close = getattr(services.store, "close", None)
        if close is not None:
            close()

    app = FastAPI(
        title="QuillAuth",
        version=VERSION,
        description="Credential lifecycle service with unified observability",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.settings = settings

    # Starlette runs the last added middleware first: correlation ID wraps
    # metrics, which wraps validation
    app.add_middleware(ValidationMiddleware, max_size=settings.MAX_REQUEST_SIZE)
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(CorrelationMiddleware)

    register_error_handlers(app)
    app.include_router(router)

    # Mount Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app(registry=metrics.registry))

    @app.get("/health")
    async def health():
        """Liveness probe - returns 200 if service is running."""
        logger.debug("health_check_liveness")
        return health_checker.liveness()

    @app.get("/health/ready")
    def health_ready():
        """
        Readiness probe.

        Returns:
            200: Service is ready to handle traffic
            503: Service is not ready
        """
        logger.debug("health_check_readiness")
        metrics.update_system_metrics()
        result = health_checker.readiness()
        status_code = 200 if result["status"] == "ready" else 503
        return JSONResponse(content=result, status_code=status_code)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "quillauth.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=get_settings().SERVICE_PORT,
    )
