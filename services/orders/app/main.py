"""
Orders Microservice
Order placement, payment reconciliation, delivery assignment and status progression
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from app.api.admin_routes import router as admin_router
from app.api.payment_routes import router as payments_router
from app.api.routes import router as orders_router
from app.core_settings import get_settings
from app.domain.errors import OrderError, ValidationError
from app.infrastructure import db as database
from app.infrastructure.payments import get_payment_gateway

SERVICE_NAME = "orders-service"
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0.0")
SERVICE_DESCRIPTION = "Order lifecycle and payment reconciliation microservice"
SERVICE_ROOT = os.path.join(os.path.dirname(__file__), "..")

settings = get_settings()

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL
)

logger = get_logger(__name__)


def missing_payment_settings() -> list[str]:
    if settings.PAYMENT_PROVIDER.lower() == "cashfree":
        required = ["CASHFREE_APP_ID", "CASHFREE_SECRET_KEY"]
    else:
        required = ["RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET"]
    return [name for name in required if not getattr(settings, name, None)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: migrations, schema, payment gateway. Nothing global is checked lazily afterwards."""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if os.path.exists(os.path.join(SERVICE_ROOT, "alembic.ini")):
        try:
            logger.info("Running database migrations")
            result = subprocess.run(
                ["alembic", "upgrade", "head"],
                cwd=SERVICE_ROOT,
                capture_output=True,
                text=True,
                check=False
            )
            if result.returncode != 0:
                logger.warning(f"Migration output: {result.stderr}")
            else:
                logger.info("Database migrations completed")
        except OSError as e:
            logger.error(f"Migration error: {e}")

    try:
        database.init_models()
        logger.info("Database models initialized")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    gateway = get_payment_gateway()
    logger.info(
        "Payment gateway ready",
        extra={'extra_fields': {'provider': gateway.name, 'missing_settings': missing_payment_settings()}}
    )

    logger.info(f"{SERVICE_NAME} started successfully")
    yield
    logger.info(f"Shutting down {SERVICE_NAME}")


app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    content = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        f"Database error on {request.method} {request.url.path}",
        exc_info=exc,
        extra={'extra_fields': {'path': request.url.path}}
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}",
        exc_info=exc,
        extra={'extra_fields': {'path': request.url.path}}
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    engine_factory=lambda: database.engine,
    config_check=missing_payment_settings,
)
app.include_router(health_service.create_health_router())

# Admin routes first so /orders/admin is not captured by /orders/{order_id}
app.include_router(admin_router)
app.include_router(orders_router)
app.include_router(payments_router)


@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }


@app.get("/info")
async def info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "payment_provider": settings.PAYMENT_PROVIDER,
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs"
        }
    }
