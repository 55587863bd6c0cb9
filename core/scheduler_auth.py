"""
Scheduler authentication using Bearer token.

Used by the external cron trigger and admin tooling; there is no user auth.
"""

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.settings import settings

security = HTTPBearer()


def verify_scheduler_token(
    credentials: HTTPAuthorizationCredentials = Security(security),
) -> str:
    """
    Verify the bearer token matches the scheduler secret.

    Raises:
        HTTPException: If the server has no token configured or it doesn't match
    """
    token = settings.scheduler_api_token
    if token is None or not token.get_secret_value():
        raise HTTPException(
            status_code=500,
            detail="Server misconfigured: SCHEDULER_API_TOKEN not set",
        )

    if credentials.credentials != token.get_secret_value():
        raise HTTPException(
            status_code=401,
            detail="Invalid scheduler authentication token",
        )

    return credentials.credentials
