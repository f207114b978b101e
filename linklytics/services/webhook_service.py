"""
Webhook Service

Formats milestone notifications per platform and delivers them, one
attempt per webhook, logging every outcome.
"""
import asyncio
import json
import hmac
import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from linklytics.config import settings
from linklytics.logging_config import get_logger
from linklytics.models.webhook import (
    MILESTONE_REACHED,
    DeliveryStatus,
    Webhook,
    WebhookLog,
    WebhookPlatform,
)
from linklytics.routes.metrics import track_webhook_sent
from linklytics.sentry_config import capture_exception

log = get_logger(component="webhooks")

# Accent colour for Discord embeds
DISCORD_EMBED_COLOR = 0x3B82F6
FOOTER_TEXT = "Linklytics"


def utc_timestamp(moment: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _human_time(timestamp: str) -> str:
    try:
        moment = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return timestamp
    return moment.strftime("%b %d, %Y %I:%M:%S %p UTC")


@dataclass(frozen=True)
class MilestonePayload:
    link_slug: str
    link_url: str
    milestone: int
    total_clicks: int
    timestamp: str

    def as_dict(self) -> dict:
        return {
            "linkSlug": self.link_slug,
            "linkUrl": self.link_url,
            "milestone": self.milestone,
            "totalClicks": self.total_clicks,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class DeliveryResult:
    webhook_id: int
    success: bool
    detail: str
    status_code: int | None = None

    @property
    def status(self) -> DeliveryStatus:
        return DeliveryStatus.SUCCESS if self.success else DeliveryStatus.FAILED


def build_slack_message(payload: MilestonePayload) -> dict:
    """Slack incoming-webhook message with header, fields and context footer."""
    return {
        "text": "🎉 Milestone Reached!",
        "blocks": [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": "🎉 Link Milestone Reached!",
                },
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Link:*\n{payload.link_slug}"},
                    {"type": "mrkdwn", "text": f"*Milestone:*\n{payload.milestone:,} clicks"},
                    {"type": "mrkdwn", "text": f"*Total Clicks:*\n{payload.total_clicks:,}"},
                    {"type": "mrkdwn", "text": f"*Destination:*\n{payload.link_url}"},
                ],
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Triggered at {_human_time(payload.timestamp)}",
                    },
                ],
            },
        ],
    }


def build_discord_message(payload: MilestonePayload) -> dict:
    """Discord webhook message with a single embed."""
    return {
        "embeds": [
            {
                "title": "🎉 Link Milestone Reached!",
                "color": DISCORD_EMBED_COLOR,
                "fields": [
                    {"name": "Link", "value": payload.link_slug, "inline": True},
                    {"name": "Milestone", "value": f"{payload.milestone:,} clicks", "inline": True},
                    {"name": "Total Clicks", "value": f"{payload.total_clicks:,}", "inline": True},
                    {"name": "Destination", "value": payload.link_url, "inline": False},
                ],
                "timestamp": payload.timestamp,
                "footer": {"text": FOOTER_TEXT},
            }
        ],
    }


def build_custom_message(payload: MilestonePayload) -> dict:
    return payload.as_dict()


MESSAGE_BUILDERS = {
    WebhookPlatform.SLACK: build_slack_message,
    WebhookPlatform.DISCORD: build_discord_message,
    WebhookPlatform.CUSTOM: build_custom_message,
}


def generate_webhook_signature(payload: str, secret: str) -> str:
    """Generate HMAC-SHA256 signature for webhook payload."""
    return hmac.new(
        secret.encode(),
        payload.encode(),
        hashlib.sha256
    ).hexdigest()


def build_request(webhook: Webhook, payload: MilestonePayload) -> tuple[str, dict]:
    """Serialized body and headers for a delivery to this webhook."""
    platform = WebhookPlatform(webhook.platform)
    body = json.dumps(MESSAGE_BUILDERS[platform](payload))

    headers = {"Content-Type": "application/json"}
    if platform == WebhookPlatform.CUSTOM:
        headers["X-Webhook-Event"] = MILESTONE_REACHED
        if webhook.secret:
            headers["X-Webhook-Signature"] = generate_webhook_signature(body, webhook.secret)
    return body, headers


async def _post(webhook: Webhook, body: str, headers: dict, client: httpx.AsyncClient) -> DeliveryResult:
    try:
        response = await asyncio.wait_for(
            client.post(
                webhook.url,
                content=body,
                headers=headers,
                timeout=settings.WEBHOOK_TIMEOUT
            ),
            settings.WEBHOOK_TIMEOUT
        )
    except Exception as e:
        return DeliveryResult(webhook_id=webhook.id, success=False, detail=str(e) or type(e).__name__)

    if response.status_code >= 200 and response.status_code < 300:
        return DeliveryResult(
            webhook_id=webhook.id,
            success=True,
            detail="Webhook delivered successfully",
            status_code=response.status_code
        )
    return DeliveryResult(
        webhook_id=webhook.id,
        success=False,
        detail=f"HTTP {response.status_code}",
        status_code=response.status_code
    )


async def send_webhook(
    webhook: Webhook,
    payload: MilestonePayload,
    client: httpx.AsyncClient | None = None
) -> DeliveryResult:
    """
    Deliver one milestone notification.

    Single attempt with WEBHOOK_TIMEOUT. Never raises; failures come back as
    a DeliveryResult with success=False.
    """
    try:
        body, headers = build_request(webhook, payload)
    except (ValueError, TypeError) as e:
        return DeliveryResult(webhook_id=webhook.id, success=False, detail=f"Cannot build payload: {e}")

    if client is not None:
        result = await _post(webhook, body, headers, client)
    else:
        async with httpx.AsyncClient() as own_client:
            result = await _post(webhook, body, headers, own_client)

    platform = getattr(webhook.platform, "value", webhook.platform)
    track_webhook_sent(str(platform), result.status.value)
    if result.success:
        log.info("webhook_delivered", webhook_id=webhook.id, url=webhook.url, milestone=payload.milestone)
    else:
        log.warning(
            "webhook_failed",
            webhook_id=webhook.id,
            url=webhook.url,
            milestone=payload.milestone,
            error=result.detail
        )
    return result


class WebhookService:
    """Service for webhook lookups, delivery logging and milestone dispatch."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_webhooks_by_user_id(self, user_id: int) -> list[Webhook]:
        """Get all active webhooks owned by a user."""
        stmt = (
            select(Webhook)
            .where(Webhook.user_id == user_id, Webhook.is_active.is_(True))
            .order_by(Webhook.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_webhook_log(
        self,
        webhook_id: int,
        link_id: int,
        event: str,
        status: DeliveryStatus,
        milestone: int | None = None,
        response: str | None = None
    ) -> WebhookLog:
        """Append one delivery audit row."""
        entry = WebhookLog(
            webhook_id=webhook_id,
            link_id=link_id,
            event=event,
            milestone=milestone,
            status=status,
            response=response
        )
        self.db.add(entry)
        await self.db.commit()
        return entry

    async def dispatch_milestone(
        self,
        webhooks: list[Webhook],
        link_id: int,
        payload: MilestonePayload,
        client: httpx.AsyncClient | None = None
    ) -> list[DeliveryResult]:
        """
        Notify every webhook subscribed to milestone_reached.

        Each delivery is independent: a failed delivery or a failed log
        write is logged and the remaining webhooks are still attempted.
        """
        # Rows are only read here; detached rows survive a rollback unexpired
        for webhook in webhooks:
            if webhook in self.db:
                self.db.expunge(webhook)

        results = []
        for webhook in webhooks:
            if webhook.event_list() is None:
                log.warning("webhook_events_invalid", webhook_id=webhook.id)
                continue
            if not webhook.subscribes_to(MILESTONE_REACHED):
                continue

            result = await send_webhook(webhook, payload, client=client)
            results.append(result)

            try:
                await self.create_webhook_log(
                    webhook_id=webhook.id,
                    link_id=link_id,
                    event=MILESTONE_REACHED,
                    milestone=payload.milestone,
                    status=result.status,
                    response=result.detail
                )
            except Exception as e:
                await self.db.rollback()
                log.error("webhook_log_failed", webhook_id=webhook.id, link_id=link_id, error=str(e))
                capture_exception()

        return results
