"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cinebook.api.v1.dependencies import get_lock_registry, get_payment_gateway
from cinebook.api.v1.router import router as v1_router
from cinebook.config import get_settings
from cinebook.database import close_db, init_db
from cinebook.errors import BookingError
from cinebook.redis_client import close_redis, get_redis
from cinebook.tasks import background_tasks


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting CineBook API...")

    if settings.DB_CREATE_ALL:
        await init_db()
        logger.info("Database schema ready")

    if settings.LOCK_BACKEND == "redis":
        await get_redis()
        logger.info("Redis connection established")

    # Start background tasks
    await background_tasks.start(await get_lock_registry(), get_payment_gateway())

    yield

    # Shutdown
    logger.info("Shutting down CineBook API...")

    await background_tasks.stop()

    if settings.LOCK_BACKEND == "redis":
        await close_redis()
        logger.info("Redis connection closed")

    await close_db()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## CineBook API

Seat inventory and booking for movie showtimes.

- **Atomic Holds**: a multi-seat hold succeeds entirely or not at all
- **Hold Expiry**: unconfirmed holds are released after the hold TTL
- **Idempotent Confirmation**: retrying a confirm never double-books or double-charges
- **Booking Ledger**: every confirmed booking is recorded with its seats and prices

### Authentication
Reservation and booking endpoints require the `X-User-ID` header.

### Workflow
1. Browse a showtime's seat map
2. Hold seats (returns a reservation with its expiry)
3. Confirm the reservation with a payment proof
4. Look up the booking
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router, prefix="/api")

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "lock_backend": settings.LOCK_BACKEND,
            "payment_mode": settings.PAYMENT_MODE,
        }

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        """Map domain errors to their HTTP status."""
        if exc.status_code >= 500:
            logger.warning(f"{exc.error_code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": str(exc) if settings.DEBUG else None,
            },
        )

    return app


# Create application instance
app = create_app()


def run():
    """Run the application with uvicorn."""
    uvicorn.run(
        "cinebook.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
