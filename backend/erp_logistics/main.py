"""Application entry point for the logistics API service."""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_logistics.api.routes.delivery_orders import router as delivery_orders_router
from erp_logistics.api.routes.lookups import router as lookups_router
from erp_logistics.core.config import settings
from erp_logistics.core.db import create_all, engine, get_session
from erp_logistics.core.logging import setup_logging
from erp_logistics.core.middleware import BodySizeLimitMiddleware, RequestContextLogMiddleware

setup_logging()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if settings.DB_AUTO_CREATE:
        await create_all(engine)
        logger.bind(url=engine.url.render_as_string(hide_password=True)).info("schema_ready")
    yield
    await engine.dispose()


app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

app.add_middleware(RequestContextLogMiddleware)


def _cors_origins() -> list[str]:
    if settings.ENV == "prod":
        if not settings.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return settings.CORS_ALLOWED_ORIGINS
    return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:5173"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Idempotency-Key",
        "X-Request-ID",
        "X-User-Code",
    ],
)

app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.get("/api/healthz", tags=["system"], summary="Liveness probe")
def healthz() -> dict[str, str]:
    """Simple liveness probe that load balancers and monitors can call."""

    return {"status": "ok"}


@app.get("/api/readyz", tags=["system"], summary="Readiness probe")
async def readyz(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
        return {"ready": True}
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail="Database not reachable") from exc


app.include_router(delivery_orders_router, prefix="/api")
app.include_router(lookups_router, prefix="/api")
