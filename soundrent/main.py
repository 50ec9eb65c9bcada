import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models, models_calendar  # noqa: F401 - register tables
from .config import ALLOWED_ORIGINS, BUSINESS_NAME, LOG_LEVEL
from .database import Base, engine
from .domain.deliveries.router import router as deliveries_router
from .domain.payments.router import router as payments_router
from .domain.reservations.exceptions import (
    ReservationNotFoundError,
    ReservationPersistenceError,
    ReservationValidationError,
)
from .domain.reservations.router import router as reservations_router
from .routes.calendar_sync import router as calendar_sync_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title=f"{BUSINESS_NAME} API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # pydantic puts the raised ValueError in ctx, which JSON cannot encode
    return [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]


@app.exception_handler(ReservationValidationError)
async def reservation_validation_handler(request: Request, exc: ReservationValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.errors})


@app.exception_handler(ReservationNotFoundError)
async def reservation_not_found_handler(request: Request, exc: ReservationNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Reservation not found"})


@app.exception_handler(ReservationPersistenceError)
async def reservation_persistence_handler(request: Request, exc: ReservationPersistenceError):
    logger.error(f"❌ {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "La réservation n'a pas pu être enregistrée. Veuillez réessayer."},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(reservations_router)
app.include_router(payments_router)
app.include_router(deliveries_router)
app.include_router(calendar_sync_router)


@app.get("/")
def root():
    return {"message": f"{BUSINESS_NAME} API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
