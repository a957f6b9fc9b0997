"""
ShopLens API: FastAPI application entry point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import DomainError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("ShopLens API starting up", version=settings.app_version)
    yield
    logger.info("ShopLens API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="AI store analyses and suggestion tracking for e-commerce stores",
    lifespan=lifespan,
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Render service-level rejections with their mapped status code."""
    logger.info(
        "api.domain_error",
        code=exc.code,
        status_code=exc.status_code,
        path=request.url.path,
    )
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
from api.v1.routers import (
    analyses,
    comments,
    credits,
    impact,
    internal,
    steps,
    suggestions,
    tasks,
)

app.include_router(credits.router)
app.include_router(analyses.router)
app.include_router(internal.router)
app.include_router(suggestions.router)
app.include_router(steps.router)
app.include_router(tasks.router)
app.include_router(comments.router)
app.include_router(impact.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
