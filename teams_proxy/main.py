"""FastAPI application entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from teams_proxy.api.v1 import commands, teams
from teams_proxy.config import settings
from teams_proxy.observability import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Teams Proxy", version=settings.app_version)

    from teams_proxy.graph.client import graph_client
    from teams_proxy.store import redis_client

    try:
        await graph_client.connect()
    except Exception as e:
        logger.warning("Failed to connect Graph client", error=str(e))

    try:
        await redis_client.connect()
    except Exception as e:
        logger.warning("Failed to connect to Redis", error=str(e))

    yield

    logger.info("Shutting down Teams Proxy")
    await graph_client.disconnect()
    await redis_client.close()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Microsoft Graph proxy for Teams administration and message statistics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(teams.router, prefix=f"{settings.api_prefix}/teams", tags=["Teams"])
app.include_router(commands.router, prefix=f"{settings.api_prefix}/commands", tags=["Commands"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint."""
    checks = {}

    try:
        from teams_proxy.store import redis_client
        await redis_client.ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {str(e)}"

    from teams_proxy.graph.client import graph_client
    checks["graph"] = "ok" if graph_client.is_connected else "error: not connected"

    all_ok = all(v == "ok" for v in checks.values())

    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks,
    }
