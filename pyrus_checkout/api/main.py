"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from pyrus_checkout.api.dependencies import CheckoutRegistry
from pyrus_checkout.api.middleware import RequestIDMiddleware, MetricsMiddleware
from pyrus_checkout.api.v1 import cart, checkout, settlements
from pyrus_checkout.infrastructure.observability.logging import setup_logging
from pyrus_checkout.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Pyrus Checkout",
        description="Cart pricing and checkout settlement service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Checkout sessions live for the lifetime of the process
    app.state.checkout_registry = CheckoutRegistry()

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(cart.router, prefix="/v1", tags=["cart"])
    app.include_router(checkout.router, prefix="/v1", tags=["checkout"])
    app.include_router(settlements.router, prefix="/v1", tags=["settlements"])

    return app


app = create_app()
