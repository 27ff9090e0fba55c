from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from amora.api.error_handling import register_exception_handlers
from amora.api.routes import router
from amora.api.schemas import HealthResponse
from amora.config import Settings
from amora.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release its connections on shutdown."""
    from amora.service.runtime import get_runtime

    try:
        get_runtime()
    except Exception as exc:
        logger.error("startup_runtime_failed", error=str(exc))

    yield

    try:
        runtime = get_runtime()
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(
    title="Amora API",
    description="Registration, sessions, profiles and proximity search for a dating app.",
    version=__version__,
    docs_url="/swagger",
    openapi_url="/api-doc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with a correlation id for logs and echo it back.

    Taken from ``X-Request-ID`` when the client sends one, otherwise generated.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/", tags=["service"])
async def root() -> Dict[str, str]:
    return {"status": "ok", "message": "Dating App API is running"}


HEALTH_CHECK_TIMEOUT_SECONDS = 3


@app.get("/healthz", response_model=HealthResponse, tags=["service"])
async def health() -> HealthResponse:
    """Dependency checks for the identity store and Redis (when configured)."""
    from amora.service.runtime import get_runtime

    checks: Dict[str, Dict[str, Any]] = {}

    async def _run_bounded(label: str, func) -> bool:
        try:
            await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except Exception as exc:
            logger.error("health_check_failed", component=label, error=str(exc))
        return False

    runtime = get_runtime()
    verify_store = getattr(runtime.store, "verify_connection", None)
    if verify_store is not None:
        db_ok = await _run_bounded("database", verify_store)
        checks["database"] = {"status": "healthy" if db_ok else "unhealthy", "type": "postgres"}
    else:
        db_ok = True
        checks["database"] = {"status": "healthy", "type": "memory"}

    redis_ok = True
    if runtime.cache is not None:
        redis_ok = await _run_bounded("redis", runtime.cache.verify_connection)
        checks["redis"] = {"status": "healthy" if redis_ok else "unhealthy"}
    else:
        checks["redis"] = {"status": "not_configured"}
    checks["revocation"] = {"backend": runtime.revocations.backend}

    return HealthResponse(
        status="healthy" if db_ok and redis_ok else "unhealthy",
        checks=checks,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
    )


def create_app() -> FastAPI:
    return app
