"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from fleet_settlement.api.middleware import RequestIDMiddleware, MetricsMiddleware
from fleet_settlement.api.v1 import payments, referrals, settlements
from fleet_settlement.infrastructure.observability.logging import setup_logging
from fleet_settlement.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Fleet Settlement Service",
        description="Weekly driver settlement and payment recording",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(settlements.router, prefix="/v1", tags=["settlements"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(referrals.router, prefix="/v1", tags=["referrals"])

    return app


app = create_app()
