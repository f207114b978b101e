"""
Public redirect routes.

GET /{slug} sends the visitor on and schedules click tracking after the
response; GET /link/{slug}/verify is where protected links land and
POST to the same path unlocks them.
"""
from urllib.parse import quote

import bcrypt
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from linklytics.config import settings
from linklytics.database import get_db
from linklytics.logging_config import get_logger
from linklytics.models.link import Link
from linklytics.routes.metrics import track_redirect
from linklytics.sentry_config import capture_exception
from linklytics.services.click_tracker import ClickContext, ClickTracker, get_click_tracker
from linklytics.services.link_service import LinkService
from linklytics.services.resolver import LinkResolver, Outcome, is_valid_destination


router = APIRouter(tags=["redirect"])

GONE_MESSAGES = {
    Outcome.INACTIVE: "This link has been deactivated",
    Outcome.EXPIRED: "This link has expired",
}


class VerifyPasswordRequest(BaseModel):
    """Request model for unlocking a protected link."""
    password: str


def verify_path(slug: str) -> str:
    return settings.PASSWORD_VERIFY_PATH.format(slug=quote(slug, safe=""))


def check_password(password: str, hashed: str) -> bool:
    """Compare a plaintext password with a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def schedule_click(
    background_tasks: BackgroundTasks,
    tracker: ClickTracker,
    link: Link,
    request: Request
):
    """Queue click tracking to run once the response has been sent."""
    background_tasks.add_task(tracker.track, ClickContext.from_request(link, request))


async def load_protected_link(slug: str, db: AsyncSession) -> Link:
    """Password protected link for slug, or 404/410."""
    resolution = await LinkResolver(LinkService(db)).resolve(slug)
    outcome = resolution.outcome

    if outcome == Outcome.NOT_FOUND or outcome == Outcome.ELIGIBLE:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Link not found or not password protected"
        )

    if outcome.is_gone:
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail=GONE_MESSAGES[outcome]
        )

    return resolution.link


@router.get("/link/{slug}/verify", response_model=dict)
async def verify_link_prompt(slug: str, db: AsyncSession = Depends(get_db)):
    """
    Landing point of the password redirect.

    Tells the client the link needs a password and where to POST it.
    """
    link = await load_protected_link(slug, db)

    return {
        "slug": link.slug,
        "passwordRequired": True,
        "verifyUrl": verify_path(slug),
        "method": "POST",
    }


@router.post("/link/{slug}/verify", response_model=dict)
async def verify_link_password(
    slug: str,
    body: VerifyPasswordRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    tracker: ClickTracker = Depends(get_click_tracker)
):
    """
    Check the password of a protected link.

    Returns the destination when the password matches; the visit is then
    counted like a direct redirect.
    """
    link = await load_protected_link(slug, db)

    if not check_password(body.password, link.password):
        get_logger(slug=slug).info("password_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect password"
        )

    if not is_valid_destination(link.original_url):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid redirect URL"
        )

    schedule_click(background_tasks, tracker, link, request)
    return {"valid": True, "originalUrl": link.original_url}


@router.get("/{slug}")
async def redirect_slug(
    slug: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    tracker: ClickTracker = Depends(get_click_tracker)
):
    """
    Resolve a short link.

    404 unknown slug, 410 inactive or expired, 302 to the verification page
    for protected links, 400 for a non-http(s) destination, otherwise 302 to
    the destination.
    """
    log = get_logger(slug=slug)

    try:
        resolution = await LinkResolver(LinkService(db)).resolve(slug)
    except Exception as e:
        log.error("redirect_failed", error=str(e))
        track_redirect("error")
        capture_exception()
        return PlainTextResponse("Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    outcome = resolution.outcome
    if outcome != Outcome.ELIGIBLE:
        track_redirect(outcome.value)

    if outcome == Outcome.NOT_FOUND:
        return PlainTextResponse("Link not found", status_code=status.HTTP_404_NOT_FOUND)

    if outcome.is_gone:
        return PlainTextResponse(GONE_MESSAGES[outcome], status_code=status.HTTP_410_GONE)

    if outcome == Outcome.PASSWORD_REQUIRED:
        return RedirectResponse(verify_path(slug), status_code=status.HTTP_302_FOUND)

    link = resolution.link
    if not is_valid_destination(link.original_url):
        log.warning("invalid_destination", link_id=link.id)
        track_redirect("invalid_destination")
        return PlainTextResponse("Invalid redirect URL", status_code=status.HTTP_400_BAD_REQUEST)

    track_redirect(outcome.value)
    schedule_click(background_tasks, tracker, link, request)
    return RedirectResponse(link.original_url, status_code=status.HTTP_302_FOUND)
