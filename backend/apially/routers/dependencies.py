"""
Router Dependencies
===================

Shared FastAPI dependencies:

- get_services():          The wired-up AppServices (set when the app starts)
- verify_dashboard_token(): Protects dashboard endpoints with DASHBOARD_API_KEY
- rate_limited(name):      Throttles an endpoint per client IP
- client_ip(request):      Best guess at who is calling

Author: ApiAlly Team
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, Response

from apially.services import AppServices


# =============================================================================
# DEPENDENCY INJECTION
# =============================================================================

_services: Optional[AppServices] = None  # This gets set when the app starts


def set_services(services: Optional[AppServices]):
    """Called when the app starts (and by tests) to hand the routers their services."""
    global _services
    _services = services


def get_services() -> AppServices:
    if _services is None:
        raise HTTPException(status_code=500, detail="Server not fully started yet")
    return _services


def current_services() -> Optional[AppServices]:
    """Like get_services() but returns None before startup instead of raising."""
    return _services


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer, else "unknown"."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# =============================================================================
# DASHBOARD AUTH
# =============================================================================

def verify_dashboard_token(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    services: AppServices = Depends(get_services),
) -> Optional[str]:
    """
    Check the dashboard token.

    Expected format: "Authorization: Bearer <key>" (or "X-API-Key: <key>").
    If DASHBOARD_API_KEY is empty the dashboard is open and this does nothing.

    Raises:
        HTTPException 401: No token
        HTTPException 403: Wrong token
    """
    expected = services.dashboard_api_key
    if not expected:
        return None

    token = None
    if authorization:
        parts = authorization.split(" ")
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise HTTPException(
                status_code=401,
                detail="Invalid Authorization format. Expected: Bearer <token>",
            )
        token = parts[1]
    elif x_api_key:
        token = x_api_key

    if not token:
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization header. Expected: Bearer <token>",
        )
    if token != expected:
        raise HTTPException(status_code=403, detail="Invalid dashboard API key")

    return token


# =============================================================================
# RATE LIMITING
# =============================================================================

def rate_limited(endpoint: str):
    """
    Build a dependency that rate limits one endpoint.

    Usage:
        @router.post("/test", dependencies=[Depends(rate_limited("email_test"))])
    """
    def check_rate_limit(
        request: Request,
        response: Response,
        services: AppServices = Depends(get_services),
    ):
        result = services.rate_limiter.check(client_ip(request), endpoint)
        if not result.allowed:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Try again after {result.retry_after} seconds.",
                headers=result.headers(),
            )
        for name, value in result.headers().items():
            response.headers[name] = value

    return check_rate_limit
