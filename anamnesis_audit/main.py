"""
FastAPI application entrypoint.

Run locally:  uvicorn anamnesis_audit.main:app --reload
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from anamnesis_audit.api.routes import router
from anamnesis_audit.config import settings
from anamnesis_audit.errors import (
    AlreadyResolvedError,
    AuditEngineError,
    AuditIntegrityError,
    InputValidationError,
    MismatchError,
    NotFoundError,
)
from anamnesis_audit.models.database import Base, engine

# Register every table on Base.metadata
from anamnesis_audit.models import anamnesis, audit  # noqa: F401

logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s | %(name)s | %(message)s")
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFoundError: 404,
    MismatchError: 409,
    AlreadyResolvedError: 409,
    InputValidationError: 422,
    AuditIntegrityError: 500,
}

app = FastAPI(
    title="Anamnesis Audit API",
    description=(
        "Audit trail, version history and outside-encounter review workflow "
        "for dental patient anamnesis records."
    ),
    version="1.0.0",
)

app.include_router(router, prefix="/api/v1")


@app.exception_handler(AuditEngineError)
def handle_engine_error(request: Request, exc: AuditEngineError):
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    body = {"detail": str(exc)}
    if isinstance(exc, InputValidationError):
        body["errors"] = exc.errors
    return JSONResponse(status_code=status_code, content=body)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
