# backend/fieldshare/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fieldshare.api.routers import access, activity, fields
from fieldshare.config import get_settings
from fieldshare.db import init_db
from fieldshare.exceptions import (
    ConfigurationError,
    FieldValidationError,
    ForbiddenError,
    GeometryError,
    InvalidStateError,
    NotFoundError,
    OverlapError,
    StoreError,
)
from fieldshare.utils.logging_setup import get_logger, setup_logging

_settings = get_settings()
setup_logging(_settings.environment, _settings.log_level, _settings.log_dir)
logger = get_logger(__name__)

app = FastAPI(title="FieldShare API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"ok": True}


# 初回起動時にDBスキーマを作成
@app.on_event("startup")
def on_startup():
    init_db()


# ---- ドメイン例外 → HTTP ステータス ----

@app.exception_handler(OverlapError)
def overlap_error_handler(request: Request, exc: OverlapError):
    return JSONResponse(
        status_code=400,
        content={"message": exc.message, "error": "FIELD_OVERLAP", "overlappingFields": exc.overlapping_fields},
    )


@app.exception_handler(GeometryError)
@app.exception_handler(FieldValidationError)
def bad_request_handler(request: Request, exc):
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ForbiddenError)
def forbidden_handler(request: Request, exc: ForbiddenError):
    return JSONResponse(status_code=403, content={"detail": exc.message})


@app.exception_handler(InvalidStateError)
def invalid_state_handler(request: Request, exc: InvalidStateError):
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(StoreError)
@app.exception_handler(ConfigurationError)
def internal_error_handler(request: Request, exc):
    # 内部詳細は返さない（ログにのみ残す）
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": "internal server error"})


app.include_router(fields.router,   prefix="/fields",   tags=["fields"])
app.include_router(access.router,   prefix="/access",   tags=["access"])
app.include_router(activity.router, prefix="/activity", tags=["activity"])
