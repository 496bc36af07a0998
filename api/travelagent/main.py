"""
TravelAgent API - Main Application Entry Point
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse, Response
import time
import logging

# Prometheus metrics
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST, REGISTRY

from travelagent.config import settings
from travelagent.exceptions import TravelAgentError, ValidationError
from travelagent.metrics import REQUEST_COUNT, REQUEST_LATENCY
from travelagent.routers import admin, bookings, destinations, health, webhooks
from travelagent.services.booking_service import BookingService
from travelagent.services.destination_service import DestinationService
from travelagent.services.notifications import NotificationDispatcher
from travelagent.services.payments import build_payment_gateway
from travelagent.utils.background import BackgroundTasks
from travelagent.utils.database import init_db, close_db, create_tables
from travelagent.utils.rate_limit import RateLimiter
from travelagent.utils.redis import init_redis, close_redis, CacheService

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager - handles startup and shutdown events
    """
    # Startup
    logger.info("Starting TravelAgent API...")

    session_factory = await init_db()
    if settings.DEBUG:
        await create_tables()
    redis_client = await init_redis()

    cache = CacheService(redis_client)
    background = BackgroundTasks()
    gateway = build_payment_gateway()
    notifier = NotificationDispatcher(session_factory)
    if not notifier.email_sender.is_configured:
        logger.warning("SENDGRID_API_KEY not set, confirmation emails will only be logged")

    app.state.payment_gateway = gateway
    app.state.background = background
    app.state.booking_service = BookingService(session_factory, gateway, notifier, background)
    app.state.destination_service = DestinationService(session_factory, cache, background)
    app.state.rate_limiter = RateLimiter(cache.client)

    logger.info("TravelAgent API ready to serve requests!")

    yield

    # Shutdown
    logger.info("Shutting down TravelAgent API...")

    await background.drain()
    await close_db()
    await close_redis()

    logger.info("Cleanup completed")


# Create FastAPI application
app = FastAPI(
    title="TravelAgent API",
    description="""
    ## Travel Booking API

    Browse destinations and packages, book trips and pay for them.

    ### Features
    - 🔍 Search destinations by text, country, type, price, duration and rating
    - ⭐ Featured and popular destinations
    - 🧳 Bookings with server-side pricing and card payment
    - ↩️ Cancellation with automatic refunds

    ### Authentication
    Requests are authenticated by the upstream gateway, which forwards the
    user id in the `X-User-Id` header.
    """,
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware with Prometheus metrics
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    # Record metrics (skip /metrics endpoint to avoid recursion)
    if request.url.path != "/metrics":
        route = request.scope.get("route")
        endpoint = route.path if route is not None else request.url.path
        method = request.method
        status = response.status_code

        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
        REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(process_time)

    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(TravelAgentError)
async def travel_agent_error_handler(request: Request, exc: TravelAgentError):
    """Map service errors to HTTP responses"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    content = {"detail": exc.message}
    if isinstance(exc, ValidationError) and exc.errors:
        content["errors"] = exc.errors
    return ORJSONResponse(status_code=exc.status_code, content=content)


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(destinations.router, prefix="/destinations", tags=["Destinations"])
app.include_router(bookings.router, prefix="/bookings", tags=["Bookings"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint - API information"""
    return {
        "name": "TravelAgent API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs" if settings.DEBUG else "disabled",
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST
    )
