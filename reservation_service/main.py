import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from . import models, errors, schemas
from .calendar_sync import close_calendar_client, get_calendar_client
from .config import settings
from .database import engine
from .logging_config import setup_logging
from .payments import get_payment_gateway
from .routers import reservation_router, payment_router, quote_router

# Setup logger
logger = logging.getLogger("reservation_service")

# Create database tables on startup
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    setup_logging()
    logger.info("Reservation service starting up...")

    if get_payment_gateway() is None:
        logger.warning("STRIPE_SECRET_KEY not set. Paid bookings and refunds are disabled.")
    if get_calendar_client() is None:
        logger.warning("Google Calendar not configured. Calendar sync is disabled.")
    if not settings.ADMIN_AUTH_ENABLED:
        logger.warning("ADMIN_AUTH_ENABLED is off. Admin endpoints are open to everyone.")

    yield  # The application is now running

    logger.info("Reservation service shutting down...")
    close_calendar_client()


app = FastAPI(
    title="Reservation Service API",
    description="Bookings, availability and payments for a vacation rental.",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(reservation_router.router)
app.include_router(quote_router.router)
app.include_router(payment_router.router)


# --- Error mapping: domain errors -> HTTP ---

def _error(status_code: int, detail: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


@app.exception_handler(errors.ValidationError)
async def validation_error_handler(request: Request, exc: errors.ValidationError):
    return _error(status.HTTP_400_BAD_REQUEST, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(status.HTTP_400_BAD_REQUEST, "Invalid request", errors=jsonable_encoder(exc.errors()))


@app.exception_handler(errors.NotFoundError)
async def not_found_handler(request: Request, exc: errors.NotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc.message)


@app.exception_handler(errors.ConflictError)
async def conflict_handler(request: Request, exc: errors.ConflictError):
    conflicts = [
        schemas.ReservationRead.model_validate(reservation).model_dump(mode="json")
        for reservation in exc.conflicts
    ]
    return _error(status.HTTP_409_CONFLICT, exc.message, conflicts=conflicts, refunded=exc.refunded)


@app.exception_handler(errors.PaymentVerificationError)
async def payment_verification_handler(request: Request, exc: errors.PaymentVerificationError):
    return _error(status.HTTP_400_BAD_REQUEST, exc.message)


@app.exception_handler(errors.PaymentNotConfiguredError)
async def payment_not_configured_handler(request: Request, exc: errors.PaymentNotConfiguredError):
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc.message)


@app.exception_handler(errors.RefundError)
async def refund_error_handler(request: Request, exc: errors.RefundError):
    return _error(status.HTTP_502_BAD_GATEWAY, exc.message)


@app.exception_handler(errors.StoreError)
async def store_error_handler(request: Request, exc: errors.StoreError):
    # Details were logged where the write failed
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Unhandled database error on {request.method} {request.url.path}: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@app.get("/")
def read_root():
    return {"message": "Welcome to the Reservation Service"}
