"""
Link model.

A short slug owned by a user that redirects to a destination URL.
"""
from datetime import datetime
from sqlalchemy import String, Text, Integer, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from linklytics.models.base import Base, TimestampMixin


class Link(Base, TimestampMixin):
    """
    Short link with its redirect state and click counters.

    click_count is only ever changed with a server-side increment.
    last_milestone is one of 0, 100, 1000, 10000 and never decreases.
    """
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # bcrypt hash
    password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_milestone: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    clicks = relationship(
        "Click",
        back_populates="link",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __repr__(self):
        return f"<Link(id={self.id}, slug={self.slug}, clicks={self.click_count}, active={self.is_active})>"
