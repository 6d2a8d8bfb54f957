import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vsend.api.endpoints import router
from vsend.core.config import settings
from vsend.db.session import create_engine, create_session_factory, init_models
from vsend.exceptions import LedgerError
from vsend.services.container import build_services

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = create_engine(settings.DATABASE_URL)
    await init_models(engine)
    app.state.services = build_services(create_session_factory(engine), settings)
    logger.info(f"{settings.PROJECT_NAME} started")
    try:
        yield
    finally:
        await app.state.services.gateway.aclose()
        await engine.dispose()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


app.include_router(router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "ok"}
