"""Main FastAPI application for the Compliance Orchestrator."""

import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from compliance_orchestrator.api.cases import router as cases_router
from compliance_orchestrator.api.device import router as device_router
from compliance_orchestrator.api.health import router as health_router
from compliance_orchestrator.api.provisioning import router as provisioning_router
from compliance_orchestrator.api.recovery import router as recovery_router
from compliance_orchestrator.api.scheduler import router as scheduler_router
from compliance_orchestrator.api.webhooks import router as webhooks_router
from compliance_orchestrator.core.config import Settings, get_settings
from compliance_orchestrator.core.dependencies import OrchestratorContainer
from compliance_orchestrator.core.exceptions import (
    BaseAPIException,
    ExternalServiceError,
    map_external_service_error,
)
from compliance_orchestrator.core.logging import get_correlation_id, get_logger, setup_logging
from compliance_orchestrator.core.middleware import (
    CorrelationIDMiddleware,
    PerformanceMonitoringMiddleware,
)

logger = get_logger(__name__)


def _error_response(exc: BaseAPIException) -> JSONResponse:
    exc.correlation_id = get_correlation_id() or exc.correlation_id
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers,
    )


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[OrchestratorContainer] = None,
) -> FastAPI:
    """Build the application and its service container."""
    settings = settings or get_settings()

    setup_logging(
        log_level=settings.log_level,
        service_name=settings.service_name,
        version=settings.service_version,
        environment=settings.environment,
    )

    app = FastAPI(
        title="Compliance Orchestrator",
        description="Device lock compliance, enrollment provisioning and recovery escalation",
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.container = container or OrchestratorContainer(settings)
    app.state.start_time = time.time()

    app.add_middleware(CorrelationIDMiddleware)
    app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold_ms=1000.0)

    if settings.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        if exc.status_code >= 500:
            logger.error("Request failed", error_code=exc.error_code, detail=exc.detail)
        else:
            logger.warning("Request rejected", error_code=exc.error_code, detail=exc.detail)
        return _error_response(exc)

    @app.exception_handler(ExternalServiceError)
    async def external_service_exception_handler(request: Request, exc: ExternalServiceError):
        logger.error("Channel call failed", service=exc.service_name, error=str(exc))
        return _error_response(map_external_service_error(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "VALIDATION",
                "message": "Request validation failed",
                "correlation_id": get_correlation_id(),
                "context": {
                    "errors": [
                        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
                        for e in exc.errors()
                    ]
                },
            },
        )

    api_prefix = settings.api_prefix
    app.include_router(health_router, prefix=f"{api_prefix}/v1", tags=["health"])
    app.include_router(webhooks_router, prefix=api_prefix)
    app.include_router(device_router, prefix=api_prefix)
    app.include_router(provisioning_router, prefix=api_prefix)
    app.include_router(cases_router, prefix=api_prefix)
    app.include_router(recovery_router, prefix=api_prefix)
    app.include_router(scheduler_router, prefix=api_prefix)

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "Starting Compliance Orchestrator",
            version=settings.service_version,
            environment=settings.environment,
        )
        await app.state.container.start()
        logger.info("Service startup complete", channels=app.state.container.channel_status())

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down Compliance Orchestrator")
        await app.state.container.stop()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "compliance_orchestrator.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level=_settings.log_level.lower(),
    )
