import logging
import time

import httpx
import sentry_sdk
from supabase import Client, create_client
from supabase.client import ClientOptions

from src.config.config import Config

logger = logging.getLogger(__name__)

_supabase_client: Client | None = None
_last_error: Exception | None = None  # Track last initialization error
_last_error_time: float = 0  # Timestamp of last error
ERROR_CACHE_TTL = 60.0  # Retry after 60 seconds


def get_supabase_client() -> Client:
    global _supabase_client, _last_error, _last_error_time

    if _supabase_client is not None:
        return _supabase_client

    # Check if error is stale (>60s old), retry if so
    if _last_error is not None:
        time_since_error = time.time() - _last_error_time
        if time_since_error < ERROR_CACHE_TTL:
            retry_in = int(ERROR_CACHE_TTL - time_since_error)
            logger.debug(
                f"Supabase client unavailable (retry in {retry_in}s). Last error: {_last_error}"
            )
            raise RuntimeError(
                f"Supabase unavailable (retry in {retry_in}s): {_last_error}"
            ) from _last_error
        logger.info("Error cache expired, retrying Supabase initialization...")
        _last_error = None
        _last_error_time = 0

    try:
        Config.validate()

        if not Config.SUPABASE_URL.startswith(("http://", "https://")):
            raise RuntimeError(
                f"SUPABASE_URL must start with 'http://' or 'https://'. "
                f"Expected: 'https://{Config.SUPABASE_URL}'"
            )

        masked_url = Config.SUPABASE_URL[:30] + "..." if len(Config.SUPABASE_URL) > 30 else Config.SUPABASE_URL
        logger.info(f"Initializing Supabase client with URL: {masked_url}")

        postgrest_base_url = f"{Config.SUPABASE_URL}/rest/v1"

        # base_url must be set so postgrest relative paths resolve correctly
        httpx_client = httpx.Client(
            base_url=postgrest_base_url,
            headers={
                "apikey": Config.SUPABASE_KEY,
                "Authorization": f"Bearer {Config.SUPABASE_KEY}",
            },
            timeout=httpx.Timeout(30.0, connect=10.0),
            limits=httpx.Limits(
                max_connections=50,
                max_keepalive_connections=20,
                keepalive_expiry=60.0,
            ),
            http2=True,
        )

        _supabase_client = create_client(
            supabase_url=Config.SUPABASE_URL,
            supabase_key=Config.SUPABASE_KEY,
            options=ClientOptions(
                postgrest_client_timeout=30,
                schema="public",
                headers={"X-Client-Info": f"{Config.SERVICE_NAME}/{Config.APP_VERSION}"},
            ),
        )

        if hasattr(_supabase_client, "postgrest") and hasattr(_supabase_client.postgrest, "session"):
            _supabase_client.postgrest.session = httpx_client

        _test_connection_internal(_supabase_client)

        return _supabase_client

    except Exception as e:
        _supabase_client = None
        _last_error = e
        _last_error_time = time.time()

        logger.error(
            f"Failed to initialize Supabase client: {type(e).__name__}: {e}",
            exc_info=True,
        )

        with sentry_sdk.new_scope() as scope:
            scope.set_context(
                "supabase_config",
                {
                    "supabase_url_set": bool(Config.SUPABASE_URL),
                    "supabase_key_set": bool(Config.SUPABASE_KEY),
                    "error_type": type(e).__name__,
                },
            )
            scope.set_tag("component", "supabase_client")
            sentry_sdk.capture_exception(e)

        raise RuntimeError(f"Supabase client initialization failed: {e}") from e


def _test_connection_internal(client: Client) -> bool:
    """
    Test database connection using the provided client directly.

    Accepts the client as a parameter to avoid recursing into
    get_supabase_client() during initialization.
    """
    try:
        client.table("profiles").select("user_id").limit(1).execute()
        logger.info("Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {type(e).__name__}: {e}")
        raise RuntimeError(f"Database connection failed: {e}") from e


def reset_supabase_client() -> bool:
    """
    Drop the cached client so the next call builds a fresh connection pool.

    Returns:
        bool: True if a cached client was discarded
    """
    global _supabase_client, _last_error, _last_error_time

    if _supabase_client is None:
        return False

    session = getattr(getattr(_supabase_client, "postgrest", None), "session", None)
    if session is not None and hasattr(session, "close"):
        try:
            session.close()
        except Exception as close_error:
            logger.debug(f"Error closing httpx client during reset: {close_error}")

    _supabase_client = None
    _last_error = None
    _last_error_time = 0
    logger.info("Supabase client reset - next request will create fresh connection")
    return True


def is_http2_protocol_error(error: Exception) -> bool:
    """Check if an exception is an HTTP/2 protocol error that requires a connection reset."""
    error_str = str(error).lower()

    if "protocolerror" in type(error).__name__.lower():
        return True

    http2_error_indicators = (
        "streaminputs.send_headers",
        "streaminputs.recv_data",
        "connectioninputs.recv_data",
        "connectionstate.closed",
        "stream closed",
        "connection reset by peer",
        "goaway",
    )
    return any(indicator in error_str for indicator in http2_error_indicators)


def execute_with_retry(operation, max_retries: int = 2, operation_name: str = "database operation"):
    """
    Execute a database operation with automatic retry on HTTP/2 protocol errors.

    Args:
        operation: Callable taking the Supabase client as its only argument.
        max_retries: Maximum number of retry attempts (default: 2)
        operation_name: Name of the operation for logging purposes

    Returns:
        The result of the operation

    Example:
        def insert_event(client):
            return client.table("subscription_history").insert(row).execute()

        result = execute_with_retry(insert_event, operation_name="append_subscription_event")
    """
    for attempt in range(max_retries + 1):
        try:
            client = get_supabase_client()
            return operation(client)
        except Exception as e:
            if not is_http2_protocol_error(e) or attempt >= max_retries:
                raise
            logger.warning(
                f"HTTP/2 protocol error in {operation_name} "
                f"(attempt {attempt + 1}/{max_retries + 1}): {e}. Resetting client and retrying..."
            )
            reset_supabase_client()
            time.sleep(0.1)

    raise RuntimeError(f"{operation_name} failed with no error captured")
