import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import Config
from src.config.logging_config import configure_logging
from src.routes.billing import router as billing_router
from src.utils.error_handlers import register_exception_handlers

configure_logging()
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
if Config.SENTRY_ENABLED and Config.SENTRY_DSN:

    def sentry_traces_sampler(sampling_context):
        """
        Sampling strategy:
        - Errors: always sampled (parent_sampled)
        - Development: 100%
        - Health endpoint: 0%
        - Everything else: SENTRY_TRACES_SAMPLE_RATE
        """
        if sampling_context.get("parent_sampled") is not None:
            return 1.0

        if Config.SENTRY_ENVIRONMENT == "development":
            return 1.0

        endpoint = sampling_context.get("asgi_scope", {}).get("path", "")
        if endpoint == "/health":
            return 0.0

        return Config.SENTRY_TRACES_SAMPLE_RATE

    sentry_sdk.init(
        dsn=Config.SENTRY_DSN,
        # Billing data: keep request bodies and user details out of Sentry
        send_default_pii=False,
        environment=Config.SENTRY_ENVIRONMENT,
        release=Config.SENTRY_RELEASE,
        traces_sampler=sentry_traces_sampler,
    )
    logger.info(
        f"Sentry initialized (environment: {Config.SENTRY_ENVIRONMENT}, release: {Config.SENTRY_RELEASE})"
    )
else:
    logger.info("Sentry disabled (SENTRY_ENABLED=false or SENTRY_DSN not set)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    is_valid, missing = Config.validate_critical_env_vars()
    if not is_valid:
        logger.error(f"Missing critical environment variables: {', '.join(missing)}")
    missing_prices = Config.missing_price_ids()
    if missing_prices:
        logger.warning(f"Unconfigured Stripe prices: {', '.join(missing_prices)}")
    logger.info(f"{Config.SERVICE_NAME} started (environment: {Config.APP_ENV})")
    yield
    logger.info(f"{Config.SERVICE_NAME} shutting down")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Tierwise Billing API",
        description="Subscription plan changes, checkout and billing portal on top of Stripe",
        version=Config.APP_VERSION,
        lifespan=lifespan,
    )

    if Config.IS_PRODUCTION:
        allowed_origins = [Config.FRONTEND_URL]
    else:
        allowed_origins = [
            Config.FRONTEND_URL,
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted(set(allowed_origins)),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "sentry-trace", "baggage"],
    )
    logger.info(f"CORS allowed origins: {allowed_origins}")

    register_exception_handlers(app)

    app.include_router(billing_router)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": Config.SERVICE_NAME, "version": Config.APP_VERSION}

    return app


app = create_app()
