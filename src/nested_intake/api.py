"""HTTP surface: ``POST /{collection}`` accepting JSON or XML payloads."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings
from .db_connector import DatabaseSession
from .decoders import is_supported
from .errors import (DecodeError, IntakeError, PayloadError, PersistError,
                     UnsupportedContentType)
from .middleware import RequestIdMiddleware, SafeErrorMiddleware
from .persistence import AggregateStore, SqlAggregateStore
from .pipeline import IntakeService
from .rules import RuleRegistry, load_rules

LOGGER = logging.getLogger("nested_intake.api")

router = APIRouter()


class ErrorDetail(BaseModel):
    code: str
    field: Optional[str] = None
    message: str


class ErrorBody(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str
    strict: bool
    types: List[str]


def status_for(error: IntakeError) -> int:
    if isinstance(error, PayloadError):
        return 422
    if isinstance(error, UnsupportedContentType):
        return 415
    if isinstance(error, DecodeError):
        return 400
    if isinstance(error, PersistError):
        return 503
    return 500


def error_response(status_code: int, code: str, message: str, field: Optional[str] = None) -> JSONResponse:
    body = ErrorBody(error=ErrorDetail(code=code, field=field, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    service: IntakeService = request.app.state.service
    return HealthResponse(
        status="ok", strict=service.strict, types=service.registry.type_names()
    )


@router.post("/{collection}", status_code=201)
async def create(collection: str, request: Request) -> Any:
    service: IntakeService = request.app.state.service
    rule = service.registry.for_collection(collection)
    if rule is None:
        return error_response(404, "not_found", f"Unknown collection {collection!r}")

    content_type = request.headers.get("content-type")
    if not is_supported(content_type):
        error = UnsupportedContentType(f"Unsupported content type {content_type!r}")
        return error_response(415, error.code, error.message)

    body = await request.body()
    result = await service.submit(body, content_type, rule.type_name)
    if result.error is not None:
        return error_response(
            status_for(result.error),
            result.error.code,
            result.error.message,
            result.error.field,
        )

    if result.record is None:
        raise RuntimeError(f"Intake of {rule.type_name} returned no record")
    payload: Dict[str, Any] = {rule.type_name: result.record.to_dict()}
    return JSONResponse(status_code=201, content=payload)


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[RuleRegistry] = None,
    store: Optional[AggregateStore] = None,
) -> FastAPI:
    """Build the application; rules are loaded and frozen before it can serve."""
    settings = settings or Settings.from_env()
    if registry is None:
        registry = load_rules(settings.rules_path)
    database = settings.database if store is None else None
    session = DatabaseSession(database, registry) if database else None
    if session is not None:
        store = SqlAggregateStore(session)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if session is not None:
            await session.open()
        try:
            yield
        finally:
            if session is not None:
                await session.dispose()

    app = FastAPI(title="Nested Intake API", version="0.1.0", lifespan=lifespan)
    app.state.service = IntakeService(registry, store=store, strict=settings.strict)
    app.include_router(router)

    # Last added = outermost.
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SafeErrorMiddleware)

    LOGGER.info(
        "Serving %s (strict=%s, store=%s)",
        ", ".join(rule.collection for rule in registry),
        settings.strict,
        type(app.state.service.store).__name__,
    )
    return app
