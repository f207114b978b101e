"""
Webhook models.

Webhook holds a user's notification target; WebhookLog is the append-only
delivery audit trail.
"""
import enum
import json
from sqlalchemy import String, Text, Integer, Boolean, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from linklytics.models.base import Base, CreatedAtMixin, TimestampMixin


MILESTONE_REACHED = "milestone_reached"


class WebhookPlatform(str, enum.Enum):
    """Payload shape expected by the receiving end."""
    SLACK = "slack"
    DISCORD = "discord"
    CUSTOM = "custom"


class DeliveryStatus(str, enum.Enum):
    """Outcome of a single delivery attempt."""
    SUCCESS = "success"
    FAILED = "failed"


class Webhook(Base, TimestampMixin):
    """
    Outbound notification target owned by a user.

    events is a JSON list of subscribed event names.
    """
    __tablename__ = "webhooks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    platform: Mapped[WebhookPlatform] = mapped_column(
        SQLEnum(WebhookPlatform, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    events: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: [MILESTONE_REACHED])
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Signs custom deliveries when set
    secret: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def event_list(self) -> list[str] | None:
        """Subscribed events, None when the stored value is malformed."""
        events = self.events
        if isinstance(events, str):
            try:
                events = json.loads(events)
            except ValueError:
                return None
        if not isinstance(events, list):
            return None
        return events

    def subscribes_to(self, event: str) -> bool:
        events = self.event_list()
        return events is not None and event in events

    def __repr__(self):
        return f"<Webhook(id={self.id}, user_id={self.user_id}, platform={self.platform})>"


class WebhookLog(Base, CreatedAtMixin):
    """Delivery record, one per (webhook, milestone) attempt."""
    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    webhook_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    link_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("links.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event: Mapped[str] = mapped_column(String(100), nullable=False)
    milestone: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(DeliveryStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    response: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self):
        return f"<WebhookLog(id={self.id}, webhook_id={self.webhook_id}, milestone={self.milestone}, status={self.status})>"
