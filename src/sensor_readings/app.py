import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .database import ReadingStore
from .errors import NotFound, PersistenceError, ValidationError
from .logging_config import log_api_request, log_temperature_reading
from .models import (
    HealthResponse,
    Invalid,
    MessageResponse,
    ReadingCreatedResponse,
    StoredReading,
    validate_submission,
)
from .redis_subscriber import FeedSubscriber

logger = logging.getLogger(__name__)

API_PREFIX = "/api/sensor"
VALIDATION_MESSAGE = "deviceId is required and temperature must be a number"

router = APIRouter(prefix=API_PREFIX)


def get_store(request: Request) -> ReadingStore:
    """Dependency returning the store the app was built with"""
    return request.app.state.store


# ============== API Endpoints ==============
@router.post(
    "/readings",
    status_code=status.HTTP_201_CREATED,
    response_model=ReadingCreatedResponse,
    responses={400: {"model": MessageResponse}, 500: {"model": MessageResponse}},
)
def submit_reading(
    payload: Any = Body(default=None),
    store: ReadingStore = Depends(get_store),
):
    """Ingest a single reading"""
    result = validate_submission(payload)
    if isinstance(result, Invalid):
        raise ValidationError(VALIDATION_MESSAGE, result.errors)

    stored = store.insert(result.reading.to_new_reading())
    log_temperature_reading(stored.device_id, stored.temperature, source="api")
    return ReadingCreatedResponse(message="Sensor reading ingested successfully", data=stored)


@router.get(
    "/readings/{device_id}/latest",
    response_model=StoredReading,
    responses={404: {"model": MessageResponse}, 500: {"model": MessageResponse}},
)
def get_latest_reading(device_id: str, store: ReadingStore = Depends(get_store)):
    """Get the reading with the greatest timestamp for a device"""
    reading = store.find_latest(device_id)
    if reading is None:
        raise NotFound("No readings found for this device")
    return reading


# ============== Error Handlers ==============
async def _validation_error_handler(request: Request, exc: ValidationError):
    logger.info(f"Rejected reading on {request.url.path}: {exc.errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": exc.message, "errors": exc.errors},
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": VALIDATION_MESSAGE, "errors": errors},
    )


async def _not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"message": exc.message})


async def _persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Store failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error", "error": exc.detail},
    )


def create_app(store: ReadingStore, subscriber: Optional[FeedSubscriber] = None) -> FastAPI:
    """Build the API around an injected store and optional feed subscriber"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle app startup and shutdown"""
        logger.info("Starting application...")
        if subscriber is not None:
            subscriber.start()
        yield
        logger.info("Shutting down application...")
        if subscriber is not None:
            subscriber.stop()

    app = FastAPI(title="Sensor Readings", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.subscriber = subscriber

    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(NotFound, _not_found_handler)
    app.add_exception_handler(PersistenceError, _persistence_error_handler)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        log_api_request(
            request.method,
            request.url.path,
            response.status_code,
            (time.time() - start_time) * 1000,
            request.headers.get("user-agent"),
        )
        return response

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        """Health check endpoint"""
        database_ok = store.ping()
        if subscriber is None:
            feed = "disabled"
        else:
            feed = "connected" if subscriber.connected else "disconnected"
        return {
            "status": "ok" if database_ok else "degraded",
            "database": "ok" if database_ok else "unreachable",
            "subscriber": feed,
        }

    app.include_router(router)
    return app
