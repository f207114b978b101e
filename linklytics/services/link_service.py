"""
Link service for redirect lookups and click accounting.

click_count and last_milestone are only changed with single UPDATE
statements evaluated by the database, never read-modify-write.
"""
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from linklytics.models.click import Click
from linklytics.models.link import Link


class LinkService:
    """Service for reading links and recording clicks against them."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_link_by_slug(self, slug: str) -> Link | None:
        """Get link by slug."""
        stmt = select(Link).where(Link.slug == slug)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_link_by_id(self, link_id: int) -> Link | None:
        """Get link by ID, refreshing any copy already held by the session."""
        stmt = (
            select(Link)
            .where(Link.id == link_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def increment_link_clicks(self, link_id: int) -> int | None:
        """
        Atomically add one to the link's click counter.

        Returns:
            The post-increment click count, None if the link does not exist
        """
        stmt = (
            update(Link)
            .where(Link.id == link_id)
            .values(click_count=Link.click_count + 1)
            .returning(Link.click_count)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        new_count = result.scalar_one_or_none()
        await self.db.commit()
        return new_count

    async def update_link(self, link_id: int, **values) -> Link | None:
        """
        Set arbitrary columns on a link.

        Not used for click_count or last_milestone on the click path; those
        go through increment_link_clicks and claim_milestone.
        """
        link = await self.get_link_by_id(link_id)
        if not link:
            return None

        for field, value in values.items():
            if not hasattr(Link, field):
                raise ValueError(f"Unknown link field: {field}")
            setattr(link, field, value)

        await self.db.commit()
        await self.db.refresh(link)
        return link

    async def claim_milestone(self, link_id: int, milestone: int) -> bool:
        """
        Advance last_milestone to milestone if it is still below it.

        Only one caller can win a given threshold, so the winner is the
        only one allowed to notify webhooks about it.

        Returns:
            True if this call advanced the milestone
        """
        stmt = (
            update(Link)
            .where(Link.id == link_id, Link.last_milestone < milestone)
            .values(last_milestone=milestone)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    async def record_click(
        self,
        link_id: int,
        device: str | None = None,
        browser: str | None = None,
        os: str | None = None,
        referrer: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        country: str | None = None,
        city: str | None = None,
        region: str | None = None,
        latitude: str | None = None,
        longitude: str | None = None,
    ) -> Click:
        """Append one click row for a link."""
        click = Click(
            link_id=link_id,
            device=device,
            browser=browser,
            os=os,
            referrer=referrer,
            ip_address=ip_address,
            user_agent=user_agent,
            country=country,
            city=city,
            region=region,
            latitude=latitude,
            longitude=longitude,
        )
        self.db.add(click)
        await self.db.commit()
        await self.db.refresh(click)
        return click

