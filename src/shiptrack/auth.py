import secrets

from fastapi import Form, HTTPException, Request
from fastapi.responses import RedirectResponse

from shiptrack.config import settings

SESSION_COOKIE_NAME = "shiptrack_session"


def verify_auth(request: Request) -> None:
    """Dependency to verify user is authenticated."""
    if not check_auth(request):
        raise HTTPException(status_code=401, detail="Not authenticated")


def check_auth(request: Request) -> bool:
    """Check if user is authenticated without raising."""
    session = request.cookies.get(SESSION_COOKIE_NAME)
    return session is not None and secrets.compare_digest(session, settings.secret_key)


def verify_cron(request: Request) -> None:
    """Dependency for scheduler triggers: a bearer token matching one of the cron secrets."""
    header = request.headers.get("authorization", "")
    allowed = [s for s in (settings.cron_secret, settings.external_cron_secret) if s]
    if not any(secrets.compare_digest(header, f"Bearer {secret}") for secret in allowed):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def login(secret: str = Form(...)) -> RedirectResponse:
    """Verify secret and set session cookie."""
    if not secrets.compare_digest(secret, settings.secret_key):
        raise HTTPException(status_code=401, detail="Invalid secret")

    response = RedirectResponse(url="/shipments", status_code=303)
    response.set_cookie(
        SESSION_COOKIE_NAME,
        settings.secret_key,
        httponly=True,
        secure=True,
        samesite="strict",
        max_age=60 * 60 * 24 * 30,  # 30 days
    )
    return response


def logout() -> RedirectResponse:
    """Clear session cookie."""
    response = RedirectResponse(url="/", status_code=303)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response
