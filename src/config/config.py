import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _get_env_var(name: str, default: str | None = None, *, strip: bool = True) -> str | None:
    """
    Fetch an environment variable with optional whitespace trimming.

    Args:
        name: Environment variable to look up.
        default: Value to return when the env var is unset or empty.
        strip: Whether to strip leading/trailing whitespace (default: True).

    Returns:
        The normalized string value or the provided default when empty.
    """
    value = os.environ.get(name)
    if value is None:
        return default

    if strip:
        value = value.strip()

    return value or default


def _get_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes"}


class Config:
    """Configuration class for the application"""

    # Environment Detection
    APP_ENV = os.environ.get("APP_ENV", "development")  # development, staging, production
    IS_PRODUCTION = APP_ENV == "production"
    IS_STAGING = APP_ENV == "staging"
    IS_DEVELOPMENT = APP_ENV == "development"
    IS_TESTING = APP_ENV in {"testing", "test"} or _get_bool("TESTING")

    # Supabase Configuration (profiles, subscription_history, webhook events, auth)
    SUPABASE_URL = os.environ.get("SUPABASE_URL")
    SUPABASE_KEY = os.environ.get("SUPABASE_KEY")

    # Stripe Configuration
    STRIPE_SECRET_KEY = _get_env_var("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = _get_env_var("STRIPE_WEBHOOK_SECRET")
    # Bounded timeout for every provider call; a timed-out mutation has an unknown outcome
    STRIPE_TIMEOUT_SECONDS = float(os.environ.get("STRIPE_TIMEOUT_SECONDS", "20"))

    # Stripe price ids per plan and billing period.
    # The free "starter" tier has no provider price.
    STRIPE_PRICE_IDS: dict[str, dict[str, str | None]] = {
        "basic": {
            "monthly": _get_env_var("STRIPE_PRICE_ID_BASIC_MONTHLY"),
            "annual": _get_env_var("STRIPE_PRICE_ID_BASIC_ANNUAL"),
        },
        "essentials": {
            "monthly": _get_env_var("STRIPE_PRICE_ID_ESSENTIALS_MONTHLY"),
            "annual": _get_env_var("STRIPE_PRICE_ID_ESSENTIALS_ANNUAL"),
        },
        "plus": {
            "monthly": _get_env_var("STRIPE_PRICE_ID_PLUS_MONTHLY"),
            "annual": _get_env_var("STRIPE_PRICE_ID_PLUS_ANNUAL"),
        },
        "advanced": {
            "monthly": _get_env_var("STRIPE_PRICE_ID_ADVANCED_MONTHLY"),
            "annual": _get_env_var("STRIPE_PRICE_ID_ADVANCED_ANNUAL"),
        },
    }

    # Frontend URLs used for checkout and billing portal redirects
    FRONTEND_URL = _get_env_var("FRONTEND_URL", "http://localhost:3000")
    CHECKOUT_SUCCESS_PATH = "/plan?success=true&session_id={CHECKOUT_SESSION_ID}"
    CHECKOUT_CANCEL_PATH = "/plan?canceled=true"
    PORTAL_RETURN_PATH = "/plan"

    # Subscription cache
    SUBSCRIPTION_CACHE_BACKEND = os.environ.get("SUBSCRIPTION_CACHE_BACKEND", "memory")  # memory, redis
    SUBSCRIPTION_CACHE_RESET_HOUR = int(os.environ.get("SUBSCRIPTION_CACHE_RESET_HOUR", "6"))
    SUBSCRIPTION_CACHE_TIMEZONE = os.environ.get("SUBSCRIPTION_CACHE_TIMEZONE", "UTC")
    SUBSCRIPTION_CACHE_SHORT_TTL_MINUTES = int(
        os.environ.get("SUBSCRIPTION_CACHE_SHORT_TTL_MINUTES", "10")
    )

    # ==================== Monitoring & Observability Configuration ====================

    # Sentry Configuration
    SENTRY_DSN = os.environ.get("SENTRY_DSN")
    SENTRY_ENABLED = _get_bool("SENTRY_ENABLED", "true")
    SENTRY_ENVIRONMENT = os.environ.get("SENTRY_ENVIRONMENT", APP_ENV)
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get("SENTRY_TRACES_SAMPLE_RATE", "0.1"))
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")
    SENTRY_RELEASE = os.environ.get("SENTRY_RELEASE", APP_VERSION)

    SERVICE_NAME = os.environ.get("SERVICE_NAME", "tierwise-billing")

    @classmethod
    def validate(cls):
        """Validate that all required environment variables are set"""
        missing_vars = []

        if not cls.SUPABASE_URL:
            missing_vars.append("SUPABASE_URL")
        if not cls.SUPABASE_KEY:
            missing_vars.append("SUPABASE_KEY")

        if missing_vars:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing_vars)}\n"
                "Please create a .env file with the following variables:\n"
                "SUPABASE_URL=your_supabase_project_url\n"
                "SUPABASE_KEY=your_supabase_service_key"
            )

        return True

    @classmethod
    def validate_critical_env_vars(cls) -> tuple[bool, list[str]]:
        """
        Validate that all critical environment variables are set.

        Returns:
            tuple: (is_valid, missing_vars)
        """
        critical_vars = {
            "SUPABASE_URL": cls.SUPABASE_URL,
            "SUPABASE_KEY": cls.SUPABASE_KEY,
            "STRIPE_SECRET_KEY": cls.STRIPE_SECRET_KEY,
        }

        missing = [name for name, value in critical_vars.items() if not value]
        return len(missing) == 0, missing

    @classmethod
    def missing_price_ids(cls) -> list[str]:
        """List STRIPE_PRICE_ID_* variables that are not configured."""
        missing = []
        for plan_id, periods in cls.STRIPE_PRICE_IDS.items():
            for period, price_id in periods.items():
                if not price_id:
                    missing.append(f"STRIPE_PRICE_ID_{plan_id.upper()}_{period.upper()}")
        return missing
