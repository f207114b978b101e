"""
Background click tracking.

Runs after the redirect response has been sent. Two independent branches:
recording the click row (with device and geo attribution) and counting it
(atomic increment followed by milestone notifications). Every failure is
logged and dropped; nothing here reaches the visitor.
"""
import asyncio
from dataclasses import dataclass

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from linklytics.database import AsyncSessionLocal
from linklytics.logging_config import get_logger
from linklytics.models.link import Link
from linklytics.routes.metrics import (
    track_click_failure,
    track_click_recorded,
    track_milestone_reached,
)
from linklytics.sentry_config import capture_exception
from linklytics.services.attribution import client_ip, extract_device_info, resolve_geo
from linklytics.services.link_service import LinkService
from linklytics.services.milestones import crossed_milestones
from linklytics.services.webhook_service import MilestonePayload, WebhookService, utc_timestamp


@dataclass(frozen=True)
class ClickContext:
    """Request metadata captured before the response is sent."""
    link_id: int
    user_agent: str
    ip_address: str
    referrer: str

    @classmethod
    def from_request(cls, link: Link, request: Request) -> "ClickContext":
        headers = request.headers
        peer = request.client.host if request.client else None
        return cls(
            link_id=link.id,
            user_agent=headers.get("user-agent", ""),
            ip_address=client_ip(headers, peer),
            referrer=headers.get("referer") or headers.get("referrer") or "",
        )


class ClickTracker:
    """
    Records and counts clicks outside the request path.

    Args:
        session_factory: Creates the sessions used by each branch
        http_client: Shared client for geo lookups and webhooks; when None
            each outbound call opens its own client
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        http_client: httpx.AsyncClient | None = None
    ):
        self.session_factory = session_factory
        self.http_client = http_client

    async def track(self, context: ClickContext) -> None:
        """Entry point scheduled as a background task."""
        await asyncio.gather(
            self.record(context),
            self.count(context),
        )

    async def record(self, context: ClickContext) -> None:
        """Attribute the click and append it to the clicks table."""
        log = get_logger(link_id=context.link_id, stage="record_click")
        try:
            device_info = extract_device_info(context.user_agent)
            geo = await resolve_geo(context.ip_address, client=self.http_client)

            async with self.session_factory() as db:
                await LinkService(db).record_click(
                    link_id=context.link_id,
                    device=device_info.device,
                    browser=device_info.browser,
                    os=device_info.os,
                    referrer=context.referrer,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    **geo.as_dict()
                )
            track_click_recorded()
        except Exception as e:
            log.error("click_record_failed", error=str(e))
            track_click_failure("record")
            capture_exception()

    async def count(self, context: ClickContext) -> None:
        """Increment the counter and notify webhooks about crossed milestones."""
        log = get_logger(link_id=context.link_id, stage="count_click")
        try:
            async with self.session_factory() as db:
                links = LinkService(db)
                new_count = await links.increment_link_clicks(context.link_id)
                if new_count is None:
                    log.warning("click_count_link_missing")
                    return

                await self.check_milestones(db, context.link_id, new_count)
        except Exception as e:
            log.error("click_count_failed", error=str(e))
            track_click_failure("count")
            capture_exception()

    async def check_milestones(self, db: AsyncSession, link_id: int, new_count: int) -> list[int]:
        """
        Claim and announce every milestone crossed by new_count.

        Each threshold is claimed with a conditional update before anything
        is sent, so concurrent clicks cannot announce the same threshold
        twice. last_milestone advances even when the owner has no webhooks.

        Returns:
            Milestones claimed by this call
        """
        log = get_logger(link_id=link_id)
        links = LinkService(db)
        link = await links.get_link_by_id(link_id)
        if not link:
            return []

        crossed = crossed_milestones(link.last_milestone, new_count)
        if not crossed:
            return []

        slug, original_url, user_id = link.slug, link.original_url, link.user_id
        webhook_service = WebhookService(db)
        webhooks = await webhook_service.get_active_webhooks_by_user_id(user_id)

        claimed = []
        for milestone in crossed:
            if not await links.claim_milestone(link_id, milestone):
                log.info("milestone_already_claimed", milestone=milestone)
                continue

            claimed.append(milestone)
            track_milestone_reached(milestone)
            log.info("milestone_reached", milestone=milestone, total_clicks=new_count, webhooks=len(webhooks))

            payload = MilestonePayload(
                link_slug=slug,
                link_url=original_url,
                milestone=milestone,
                total_clicks=new_count,
                timestamp=utc_timestamp(),
            )
            try:
                await webhook_service.dispatch_milestone(
                    webhooks,
                    link_id,
                    payload,
                    client=self.http_client
                )
            except Exception as e:
                log.error("milestone_dispatch_failed", milestone=milestone, error=str(e))
                track_click_failure("dispatch")
                capture_exception()

        return claimed


# Singleton instance
click_tracker = ClickTracker()


def get_click_tracker() -> ClickTracker:
    """Dependency returning the process-wide tracker."""
    return click_tracker
