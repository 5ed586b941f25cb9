"""FastAPI application factory."""

from fastapi import FastAPI

from btcsim.config import get_settings
from btcsim.health.router import router as health_router
from btcsim.middleware import setup_middleware
from btcsim.simulations.registry import SimulationRegistry
from btcsim.simulations.router import router as simulations_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Bitcoin Challenge Simulators",
        description="Step-by-step simulators for scripts, transactions, nodes and HD wallets",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.registry = SimulationRegistry(settings)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(simulations_router)

    return app


app = create_app()
