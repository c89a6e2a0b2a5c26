"""
API key checks for the report routers.

Project reports and milestone summaries open with the project key or the
admin key. Cross-project reports need the admin key. A router whose key
is not configured is left open.
"""
from typing import Iterable, Optional
from fastapi import Security, HTTPException, status
from fastapi.security import APIKeyHeader
from qa_insights.config import get_settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

settings = get_settings()

OPEN_ACCESS = "no-auth-required"


def check_report_key(
    api_key: Optional[str],
    accepted: Iterable[Optional[str]],
    scope: str
) -> str:
    """
    Match a request's key against the keys accepted for a report scope.

    Args:
        api_key: Value of the X-API-Key header, if sent
        accepted: Keys that open the scope (unset keys are ignored)
        scope: Report scope named in error messages

    Raises:
        HTTPException: 401 when no key was sent, 403 when it does not match
    """
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{scope} reports need an API key in the X-API-Key header."
        )
    if api_key not in {key for key in accepted if key}:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"API key not valid for {scope.lower()} reports"
        )
    return api_key


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Gate project-scoped reports on API_KEY (ADMIN_API_KEY also passes)."""
    if not settings.API_KEY:
        return OPEN_ACCESS
    return check_report_key(api_key, (settings.API_KEY, settings.ADMIN_API_KEY), "Project")


async def verify_admin_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Gate cross-project reports on ADMIN_API_KEY alone."""
    if not settings.ADMIN_API_KEY:
        return OPEN_ACCESS
    return check_report_key(api_key, (settings.ADMIN_API_KEY,), "Cross-project")
