"""
Shared fixtures.

Each test gets its own SQLite database file (aiosqlite) and an httpx
client whose transport records outbound requests instead of sending them.
"""
import itertools

import bcrypt
import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from linklytics.models.base import Base
from linklytics.models.click import Click  # noqa: F401
from linklytics.models.link import Link
from linklytics.models.webhook import MILESTONE_REACHED, Webhook, WebhookLog, WebhookPlatform  # noqa: F401
from linklytics.services.click_tracker import ClickTracker


GEO_HOST = "ip-api.com"

GEO_SUCCESS = {
    "status": "success",
    "country": "United States",
    "city": "Mountain View",
    "regionName": "California",
    "lat": 37.4056,
    "lon": -122.0775,
}

_slugs = itertools.count(1)


def _hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=4)).decode()


class OutboundRecorder:
    """
    MockTransport handler.

    Responses are looked up by full URL, then by host; anything unmatched
    gets a 200. A route may be an httpx.Response, an exception instance to
    raise, or a callable taking the request.
    """

    def __init__(self):
        self.requests = []
        self.routes = {GEO_HOST: httpx.Response(200, json=GEO_SUCCESS)}

    def route(self, key: str, response):
        self.routes[key] = response

    def sent_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get(str(request.url), self.routes.get(request.url.host))
        if response is None:
            return httpx.Response(200, text="ok")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        # Fresh copy per request; a Response object is bound to one request
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=response.content,
        )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'linklytics.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def outbound():
    return OutboundRecorder()


@pytest.fixture
async def http_client(outbound):
    async with httpx.AsyncClient(transport=httpx.MockTransport(outbound)) as client:
        yield client


@pytest.fixture
def tracker(session_factory, http_client):
    return ClickTracker(session_factory=session_factory, http_client=http_client)


@pytest.fixture
def make_link(db):
    async def _make(**overrides) -> Link:
        values = {
            "user_id": 1,
            "slug": f"link-{next(_slugs)}",
            "original_url": "https://example.com/landing",
            "is_active": True,
            "click_count": 0,
            "last_milestone": 0,
        }
        values.update(overrides)
        link = Link(**values)
        db.add(link)
        await db.commit()
        await db.refresh(link)
        return link
    return _make


@pytest.fixture
def make_webhook(db):
    async def _make(**overrides) -> Webhook:
        values = {
            "user_id": 1,
            "name": "Team alerts",
            "url": "https://hooks.example.com/custom",
            "platform": WebhookPlatform.CUSTOM,
            "events": [MILESTONE_REACHED],
            "is_active": True,
        }
        values.update(overrides)
        webhook = Webhook(**values)
        db.add(webhook)
        await db.commit()
        await db.refresh(webhook)
        return webhook
    return _make


@pytest.fixture
def hash_password():
    return _hash_password
