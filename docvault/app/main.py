"""FastAPI application bootstrap for DocVault."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import get_settings
from .deps import Services, build_services
from .errors import install_exception_handlers
from .observability import configure_logging
from .routers import admin, auth, registry, verify


def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            settings = get_settings()
            configure_logging(settings.log_level, "json" if settings.is_production else settings.log_format)
            app.state.services = build_services(settings)
        else:
            app.state.services = services
        try:
            yield
        finally:
            if owned:
                app.state.services.close()

    app = FastAPI(title="DocVault API", version="0.1.0", lifespan=lifespan)
    install_exception_handlers(app)

    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    app.include_router(registry.router, prefix="/registry", tags=["registry"])
    app.include_router(verify.router, prefix="/verify", tags=["verify"])
    app.include_router(admin.router, tags=["admin"])  # /admin and /audit endpoints

    return app


app = create_app()
