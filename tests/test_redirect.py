"""Redirect and password verification endpoints."""
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select

from linklytics.database import get_db
from linklytics.main import app
from linklytics.models.click import Click
from linklytics.models.link import Link
from linklytics.models.webhook import WebhookLog
from linklytics.services.click_tracker import ClickTracker, get_click_tracker


@pytest.fixture
async def client(session_factory, tracker):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_click_tracker] = lambda: tracker
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver"
    ) as test_client:
        yield test_client
    app.dependency_overrides.clear()


async def clicks_for(session_factory, link_id: int) -> list[Click]:
    async with session_factory() as session:
        result = await session.execute(select(Click).where(Click.link_id == link_id))
        return list(result.scalars().all())


async def stored_link(session_factory, link_id: int) -> Link:
    async with session_factory() as session:
        return await session.get(Link, link_id)


async def test_unknown_slug_is_404(client):
    response = await client.get("/nothing-here")

    assert response.status_code == 404
    assert response.text == "Link not found"


async def test_deactivated_link_is_gone(client, make_link, session_factory):
    link = await make_link(slug="retired", is_active=False)

    response = await client.get("/retired")

    assert response.status_code == 410
    assert response.text == "This link has been deactivated"
    assert await clicks_for(session_factory, link.id) == []


async def test_expired_link_is_gone(client, make_link, session_factory):
    link = await make_link(slug="flash-sale", expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))

    response = await client.get("/flash-sale")

    assert response.status_code == 410
    assert response.text == "This link has expired"
    assert (await stored_link(session_factory, link.id)).click_count == 0


async def test_protected_link_redirects_to_verification(client, make_link, hash_password, session_factory):
    link = await make_link(slug="members", password=hash_password("open sesame"))

    response = await client.get("/members")

    assert response.status_code == 302
    assert response.headers["location"] == "/link/members/verify"
    assert await clicks_for(session_factory, link.id) == []


async def test_non_http_destination_is_rejected(client, make_link, session_factory):
    link = await make_link(slug="sneaky", original_url="javascript:alert(1)")

    response = await client.get("/sneaky")

    assert response.status_code == 400
    assert response.text == "Invalid redirect URL"
    assert await clicks_for(session_factory, link.id) == []
    assert (await stored_link(session_factory, link.id)).click_count == 0


async def test_eligible_link_redirects_and_records_click(client, make_link, session_factory, outbound):
    link = await make_link(slug="docs", original_url="https://docs.example.com/start")

    response = await client.get(
        "/docs",
        headers={
            "user-agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.1; rv:121.0) Gecko/20100101 Firefox/121.0",
            "referer": "https://search.example.com/",
            "x-forwarded-for": "203.0.113.9, 10.0.0.1",
        },
    )

    assert response.status_code == 302
    assert response.headers["location"] == "https://docs.example.com/start"

    [click] = await clicks_for(session_factory, link.id)
    assert (click.device, click.browser, click.os) == ("desktop", "Firefox", "macOS")
    assert click.referrer == "https://search.example.com/"
    assert click.ip_address == "203.0.113.9"
    assert click.country == "United States"
    assert (await stored_link(session_factory, link.id)).click_count == 1
    assert outbound.requests[0].url.path == "/json/203.0.113.9"


async def test_redirect_survives_tracking_failure(session_factory, make_link, http_client):
    await make_link(slug="resilient", original_url="https://example.com/ok")

    def unavailable():
        raise RuntimeError("database unavailable")

    broken = ClickTracker(session_factory=unavailable, http_client=http_client)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_click_tracker] = lambda: broken
    try:
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver"
        ) as test_client:
            response = await test_client.get("/resilient")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 302
    assert response.headers["location"] == "https://example.com/ok"


async def test_hundredth_visit_fires_milestone_webhook(client, make_link, make_webhook, session_factory, outbound):
    link = await make_link(slug="viral", click_count=99)
    hook = await make_webhook(url="https://api.example.com/milestones")

    response = await client.get("/viral")

    assert response.status_code == 302
    stored = await stored_link(session_factory, link.id)
    assert (stored.click_count, stored.last_milestone) == (100, 100)
    assert len(outbound.sent_to("https://api.example.com/milestones")) == 1

    async with session_factory() as session:
        logs = (await session.execute(select(WebhookLog))).scalars().all()
    assert [(log.webhook_id, log.milestone) for log in logs] == [(hook.id, 100)]


async def test_fixed_paths_are_not_treated_as_slugs(client, make_link):
    await make_link(slug="health", original_url="https://example.com/shadowed")

    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["database"] == "ok"

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "redirects_total" in metrics.text


async def test_verify_with_correct_password(client, make_link, hash_password, session_factory):
    link = await make_link(
        slug="members",
        original_url="https://example.com/members-area",
        password=hash_password("open sesame"),
    )

    response = await client.post("/link/members/verify", json={"password": "open sesame"})

    assert response.status_code == 200
    assert response.json() == {"valid": True, "originalUrl": "https://example.com/members-area"}
    assert len(await clicks_for(session_factory, link.id)) == 1


async def test_verify_with_wrong_password(client, make_link, hash_password, session_factory):
    link = await make_link(slug="members", password=hash_password("open sesame"))

    response = await client.post("/link/members/verify", json={"password": "guess"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Incorrect password"
    assert await clicks_for(session_factory, link.id) == []


async def test_verify_unprotected_or_unknown_link_is_404(client, make_link):
    await make_link(slug="public")

    assert (await client.post("/link/public/verify", json={"password": "x"})).status_code == 404
    assert (await client.post("/link/missing/verify", json={"password": "x"})).status_code == 404


async def test_verify_expired_protected_link_is_gone(client, make_link, hash_password):
    await make_link(
        slug="old-members",
        password=hash_password("open sesame"),
        expires_at=datetime.now(timezone.utc) - timedelta(days=1),
    )

    response = await client.post("/link/old-members/verify", json={"password": "open sesame"})

    assert response.status_code == 410
    assert response.json()["detail"] == "This link has expired"


async def test_verify_requires_password_field(client, make_link, hash_password):
    await make_link(slug="members", password=hash_password("open sesame"))

    response = await client.post("/link/members/verify", json={})

    assert response.status_code == 422


@pytest.mark.parametrize("slug", ["docs", "redoc", "openapi.json"])
async def test_framework_paths_do_not_shadow_slugs(client, make_link, slug):
    await make_link(slug=slug, original_url="https://example.com/campaign")

    response = await client.get(f"/{slug}")

    assert response.status_code == 302
    assert response.headers["location"] == "https://example.com/campaign"


async def test_api_docs_are_served_under_meta_prefix(client):
    assert (await client.get("/_meta/openapi.json")).json()["info"]["title"] == "Linklytics"
    assert (await client.get("/_meta/docs")).status_code == 200


async def test_following_password_redirect_lands_on_prompt(client, make_link, hash_password):
    await make_link(slug="members", password=hash_password("open sesame"))

    redirect = await client.get("/members")
    landing = await client.get(redirect.headers["location"])

    assert landing.status_code == 200
    assert landing.json() == {
        "slug": "members",
        "passwordRequired": True,
        "verifyUrl": "/link/members/verify",
        "method": "POST",
    }


async def test_password_prompt_for_unprotected_or_gone_link(client, make_link, hash_password):
    await make_link(slug="public")
    await make_link(slug="closed", password=hash_password("x"), is_active=False)

    assert (await client.get("/link/public/verify")).status_code == 404
    assert (await client.get("/link/missing/verify")).status_code == 404
    closed = await client.get("/link/closed/verify")
    assert closed.status_code == 410
    assert closed.json()["detail"] == "This link has been deactivated"


def redirect_count(outcome: str) -> float:
    return REGISTRY.get_sample_value("redirects_total", {"outcome": outcome}) or 0.0


async def test_invalid_destination_is_not_counted_as_eligible(client, make_link):
    await make_link(slug="sneaky", original_url="javascript:alert(1)")
    eligible_before = redirect_count("eligible")
    invalid_before = redirect_count("invalid_destination")

    await client.get("/sneaky")

    assert redirect_count("eligible") == eligible_before
    assert redirect_count("invalid_destination") == invalid_before + 1
