"""
SalesCast API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import SalesCastError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("SalesCast API starting up", version=settings.app_version, env=settings.app_env)
    if settings.create_tables_on_startup:
        from db.session import create_all_tables

        await create_all_tables()
    yield
    logger.info("SalesCast API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Multi-tenant sales analytics and demand forecasting",
    lifespan=lifespan,
)


@app.exception_handler(SalesCastError)
async def salescast_error_handler(request: Request, exc: SalesCastError):
    """Render domain errors with their machine-readable kind and context."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log("api.request_failed", path=request.url.path, kind=exc.kind, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import admin, auth, companies, offers, training

app.include_router(auth.router)
app.include_router(companies.router)
app.include_router(offers.router)
app.include_router(training.router)
app.include_router(admin.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
