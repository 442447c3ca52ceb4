import logging

import redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from vpshub.api.deps import http_error
from vpshub.api.v1.router import api_router
from vpshub.core.config import settings
from vpshub.core.db import AsyncSessionLocal
from vpshub.services.errors import OrchestratorError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("vpshub")

app = FastAPI(title=settings.APP_NAME, description="Order provisioning orchestrator")

if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(OrchestratorError)
async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
    # routes map the errors they expect; anything that slips through lands here
    mapped = http_error(exc)
    logger.warning("unhandled orchestrator error path=%s code=%s msg=%s", request.url.path, exc.code.value, exc.message)
    return JSONResponse(status_code=mapped.status_code, content={"detail": exc.message, "code": exc.code.value})


@app.get("/api/docs", include_in_schema=False)
async def docs_alias():
    return RedirectResponse(url="/docs")


async def _database_ready() -> bool:
    try:
        async with AsyncSessionLocal() as s:
            await s.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("health db check failed err=%s", str(e)[:200])
        return False
    return True


def _lock_store_ready() -> bool:
    # redis backs the sweep lock and the celery broker
    try:
        return bool(redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=2).ping())
    except redis.RedisError as e:
        logger.warning("health redis check failed err=%s", str(e)[:200])
        return False


@app.get("/health")
async def health():
    checks = {"db_ok": await _database_ready(), "redis_ok": _lock_store_ready()}
    return {"status": "ok" if all(checks.values()) else "degraded", **checks}
