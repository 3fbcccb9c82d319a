import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from loyalty.core.config import CORS_ORIGINS, DATABASE_URL
from loyalty.core.database import Base, engine
from loyalty.core.logging_setup import configure_logging
from loyalty.core.startup_checks import (
    ensure_migrations_applied,
    ensure_redemption_code_index,
    validate_database_environment,
)
from loyalty.middleware.observability import ObservabilityMiddleware
import loyalty.models  # garante que os models são importados antes do create_all

from loyalty.routers.auth import router as auth_router
from loyalty.routers.coupons import router as coupons_router
from loyalty.routers.pos import router as pos_router
from loyalty.routers.shop_admin_coupons import router as shop_admin_coupons_router
from loyalty.routers.internal_metrics import router as internal_metrics_router
from loyalty.services.errors import LoyaltyError

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)

_HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        ensure_redemption_code_index(engine)
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Loyalty Coupons API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)


def _error_body(message: str, code: str, data=None) -> dict:
    body = {"success": False, "message": message, "error": code}
    if data is not None:
        body["data"] = data
    return body


@app.exception_handler(LoyaltyError)
async def loyalty_error_handler(request: Request, exc: LoyaltyError):
    request.state.error_code = exc.code
    if exc.alert:
        logger.critical(
            "Operational alert code=%s endpoint=%s %s",
            exc.code,
            request.method,
            request.url.path,
            extra={"error_code": exc.code, "status_code": exc.status_code},
            exc_info=exc,
        )
    else:
        logger.info(
            "Request refused code=%s endpoint=%s %s",
            exc.code,
            request.method,
            request.url.path,
            extra={"error_code": exc.code, "status_code": exc.status_code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.code, exc.details()),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, exc: StarletteHTTPException):
    code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail), code),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=_error_body("Invalid request", "VALIDATION_ERROR", {"errors": errors}),
    )


# Routers
app.include_router(auth_router)
app.include_router(coupons_router)
app.include_router(pos_router)
app.include_router(shop_admin_coupons_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
