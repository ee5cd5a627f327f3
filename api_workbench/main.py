"""
API Workbench - FastAPI Application Entry Point

A multi-protocol API request workbench: HTTP, GraphQL, gRPC, WebSocket and
SSE requests with environment variables, scripts and OAuth2 token flows.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import init_db
from .exceptions import register_exception_handlers
from .log import configure_logging, get_logger
from .routers import connections, environments, execute, oauth2
from .workbench import Workbench


log = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        log_dir=settings.log_dir if settings.log_to_file else None,
    )
    init_db()
    app.state.workbench = Workbench(settings)
    log.info("API Workbench started")
    yield
    await app.state.workbench.shutdown()


app = FastAPI(
    title="API Workbench",
    description="Build, send and inspect requests across HTTP, GraphQL, gRPC, WebSocket and SSE",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# Allow all origins; the API is meant for a local UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register global exception handlers
register_exception_handlers(app)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "name": "API Workbench",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Register routers
app.include_router(environments.router)
app.include_router(execute.router)
app.include_router(connections.router)
app.include_router(oauth2.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api_workbench.main:app",
        host="127.0.0.1",
        port=8000,
        reload=False,
    )
