"""
FastAPI Security Dependencies
Resolve the calling user from a Supabase Auth bearer token
"""

import logging

from fastapi import Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from src.config.supabase_config import get_supabase_client
from src.utils.exceptions import Unauthenticated

logger = logging.getLogger(__name__)

# auto_error=False so a missing header renders through our own error body
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: str
    email: str | None = None


def _lookup_user(token: str) -> CurrentUser | None:
    client = get_supabase_client()
    try:
        response = client.auth.get_user(token)
    except Exception as e:
        # Supabase Auth raises for expired, malformed or revoked tokens
        logger.info(f"Rejected bearer token: {type(e).__name__}")
        return None

    user = getattr(response, "user", None)
    if user is None:
        return None
    return CurrentUser(id=str(user.id), email=getattr(user, "email", None))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> CurrentUser:
    """
    Validate the Supabase access token from the Authorization header

    Raises:
        Unauthenticated: Header missing or token rejected by Supabase Auth
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()

    user = await run_in_threadpool(_lookup_user, credentials.credentials)
    if user is None:
        raise Unauthenticated()
    return user
