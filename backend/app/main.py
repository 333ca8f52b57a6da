from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.errors import DomainError, domain_error_handler
from app.core.files.router import internal_router as files_internal_router
from app.core.files.router import router as files_router
from app.core.folders.router import router as folders_router
from app.core.links.router import router as links_router
from app.core.permissions.router import router as permissions_router
from app.core.provisioning.router import router as provisioning_router
from app.core.uploads.router import router as uploads_router
from app.core.workspaces.router import router as workspaces_router
from app.logging_config import configure_logging
from app.settings import get_settings

settings = get_settings()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="File Collection API",
        version="0.1.0",
        docs_url="/docs" if settings.APP_DEBUG else None,
        redoc_url="/redoc" if settings.APP_DEBUG else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.APP_DEBUG else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DomainError, domain_error_handler)

    app.include_router(provisioning_router)
    app.include_router(workspaces_router)
    app.include_router(folders_router)
    app.include_router(files_router)
    app.include_router(links_router)
    app.include_router(permissions_router)
    app.include_router(uploads_router)
    app.include_router(files_internal_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
