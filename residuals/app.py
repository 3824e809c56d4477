import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from residuals.application import PipelineCoordinator, configure_pipeline_coordinator
from residuals.core.config import ResidualsSettings
from residuals.infrastructure import ResidualsApiClient, configure_upstream, get_upstream
from residuals.routes import pipeline

logger = logging.getLogger(__name__)


def create_app(settings: ResidualsSettings | None = None) -> FastAPI:
    settings = settings or ResidualsSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client: ResidualsApiClient | None = None
        if settings.api_base:
            client = ResidualsApiClient(settings.api_base, token=settings.api_token, timeout=settings.api_timeout)
            configure_upstream(client)
            logger.info("Residuals upstream: %s", settings.api_base)
        else:
            logger.info("Residuals upstream: in-memory")

        coordinator = PipelineCoordinator(
            get_upstream(),
            poll_interval=settings.poll_interval,
            stale_warning_after=settings.stale_warning_after,
        )
        configure_pipeline_coordinator(coordinator)
        try:
            yield
        finally:
            await coordinator.close()
            if client is not None:
                await client.aclose()

    app = FastAPI(title="Residuals Pipeline API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(pipeline.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Residuals Pipeline API",
                "docs": "/docs",
                "health": "/api/residuals/periods",
            }
        )

    return app


app = create_app()
