"""
Slug resolution.

Classifies whether a link may be redirected to, without side effects.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlsplit

from linklytics.models.link import Link
from linklytics.services.link_service import LinkService


ALLOWED_SCHEMES = ("http", "https")


class Outcome(str, enum.Enum):
    """Redirect eligibility of a slug."""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    PASSWORD_REQUIRED = "password_required"
    ELIGIBLE = "eligible"

    @property
    def is_gone(self) -> bool:
        return self in (Outcome.INACTIVE, Outcome.EXPIRED)


@dataclass(frozen=True)
class Resolution:
    outcome: Outcome
    link: Link | None = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def classify_link(link: Link | None, now: datetime | None = None) -> Outcome:
    """
    Classify a link in precedence order: existence, active, expiry, password.

    An inactive link that has also expired reports INACTIVE.
    """
    if link is None:
        return Outcome.NOT_FOUND
    if not link.is_active:
        return Outcome.INACTIVE

    now = _as_utc(now) if now else datetime.now(timezone.utc)
    if link.expires_at is not None and _as_utc(link.expires_at) < now:
        return Outcome.EXPIRED
    if link.password:
        return Outcome.PASSWORD_REQUIRED
    return Outcome.ELIGIBLE


def is_valid_destination(url: str | None) -> bool:
    """Only absolute http(s) URLs may be redirected to."""
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in ALLOWED_SCHEMES and bool(parts.netloc)


class LinkResolver:
    """Looks up a slug and classifies it."""

    def __init__(self, links: LinkService):
        self.links = links

    async def resolve(self, slug: str, now: datetime | None = None) -> Resolution:
        link = await self.links.get_link_by_slug(slug)
        return Resolution(outcome=classify_link(link, now), link=link)
