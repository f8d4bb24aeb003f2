from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager
import asyncio

from core.config import settings
from core.database import db_manager, initialize_db
from core.logging import setup_logging, get_structured_logger
from core.exceptions import (
    APIException,
    ExternalServiceException,
    api_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    sqlalchemy_exception_handler,
    general_exception_handler
)
from core.utils.messages.email import MailgunEmailSender
from routes import admin_router, checkout_router, health_router, orders_router
from services.delivery import DeliveryService, NominatimPincodeLookup
from services.notifications import NotificationService, EmailBranding
from services.payments import RazorpayGateway
from services.reports import ReportService

logger = get_structured_logger(__name__)

REPORT_CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60


def build_services(app: FastAPI, session_factory) -> None:
    """Create the long-lived services and hang them on app.state."""
    email_sender = MailgunEmailSender(
        api_key=settings.MAILGUN_API_KEY,
        domain=settings.MAILGUN_DOMAIN,
        from_email=settings.MAILGUN_FROM_EMAIL,
        is_production=settings.is_production,
    )
    notification_service = NotificationService(
        session_factory,
        email_sender,
        admin_email=settings.ADMIN_EMAIL,
        branding=EmailBranding(
            brand_name=settings.BRAND_NAME,
            support_email=settings.SUPPORT_EMAIL,
            frontend_url=settings.FRONTEND_URL,
            currency_symbol=settings.CURRENCY_SYMBOL,
        ),
        max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
        batch_window_seconds=settings.NOTIFICATION_BATCH_WINDOW_SECONDS,
    )
    app.state.notification_service = notification_service
    app.state.delivery_service = DeliveryService(
        session_factory,
        NominatimPincodeLookup(
            settings.PINCODE_LOOKUP_URL,
            timeout_seconds=settings.PINCODE_LOOKUP_TIMEOUT_SECONDS,
            user_agent=settings.PINCODE_LOOKUP_USER_AGENT,
        ),
        cache_ttl_seconds=settings.DELIVERY_SETTINGS_CACHE_TTL_SECONDS,
        local_radius_km=settings.LOCAL_DELIVERY_RADIUS_KM,
    )
    app.state.report_service = ReportService(
        session_factory,
        notification_service,
        async_threshold=settings.REPORT_ASYNC_THRESHOLD,
    )

    try:
        app.state.payment_gateway = RazorpayGateway(
            settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET, test_mode=settings.RAZORPAY_TEST_MODE)
    except ExternalServiceException:
        app.state.payment_gateway = None
        logger.warning(message="Razorpay credentials not configured; online payment routes are disabled")


async def run_report_job_cleanup(report_service: ReportService):
    while True:
        await asyncio.sleep(REPORT_CLEANUP_INTERVAL_SECONDS)
        try:
            removed = await report_service.cleanup_old_jobs(days_old=settings.REPORT_JOB_RETENTION_DAYS)
            logger.info(message="Old report jobs removed", metadata={"count": removed})
        except SQLAlchemyError as e:
            logger.error(message="Report job cleanup failed", exception=e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(level=settings.LOG_LEVEL, log_format=settings.LOG_FORMAT)

    initialize_db(settings.SQLALCHEMY_DATABASE_URI, settings.ENVIRONMENT == "local")
    await db_manager.create_tables()
    build_services(app, db_manager.session_factory)

    cleanup_task = asyncio.create_task(run_report_job_cleanup(app.state.report_service))
    logger.info(message="Order core started", metadata={"environment": settings.ENVIRONMENT})

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        logger.info(message="Report cleanup task cancelled during shutdown")

    # Send whatever is still waiting in a batch window before the engine goes away
    await app.state.notification_service.flush_batches()
    await app.state.notification_service.wait_for_pending()
    await app.state.report_service.wait_for_pending()
    await db_manager.dispose()


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(
        title="Order Core API",
        description="Checkout pricing, order lifecycle, notifications and reporting.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan_handler,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(checkout_router)
    app.include_router(orders_router)
    app.include_router(admin_router)
    app.include_router(health_router)

    # Register exception handlers
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


app = create_app()


@app.get("/")
async def read_root():
    return {
        "service": "Order Core API",
        "status": "Running",
        "version": "1.0.0",
    }
