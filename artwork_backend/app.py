import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from artwork_backend.core.errors import ArtworkError
from artwork_backend.core.settings import StoreSettings
from artwork_backend.infrastructure import StoreRegistry, configure_store_registry, has_store_registry
from artwork_backend.routes import pending

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = StoreSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned: StoreRegistry | None = None
        if not has_store_registry():
            owned = StoreRegistry(settings)
            configure_store_registry(owned)
        try:
            yield
        finally:
            if owned is not None:
                owned.close()
                configure_store_registry(None)

    app = FastAPI(title="Artwork Approval API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ArtworkError)
    async def handle_artwork_error(request: Request, exc: ArtworkError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.warning("api.error", extra={"code": exc.code, "path": request.url.path})
        return JSONResponse(
            status_code=exc.http_status,
            content=jsonable_encoder(
                {"ok": False, "error": {"code": exc.code, "message": exc.message, "details": exc.details}}
            ),
        )

    app.include_router(pending.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Artwork Approval API",
                "docs": "/docs",
                "health": "/api/health",
            }
        )

    return app


app = create_app()
