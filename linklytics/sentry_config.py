"""
Sentry error tracking.

Background click tracking swallows its exceptions so the visitor never
sees them; capture_exception is how those failures still get reported.
"""
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from linklytics.config import settings
from linklytics.logging_config import get_logger

log = get_logger(component="sentry")

# Visitor identifiers captured on the click path
SCRUBBED_HEADERS = ("x-forwarded-for", "x-real-ip", "user-agent", "referer", "cookie")


def configure_sentry():
    """Enable Sentry when SENTRY_DSN is set; otherwise log and do nothing."""
    if not settings.SENTRY_DSN:
        log.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        before_send=scrub_event,
        send_default_pii=False,
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )
    log.info("sentry_initialized", environment=settings.ENVIRONMENT)


def scrub_event(event, hint):
    """Tag the service and drop visitor headers from request data."""
    event.setdefault("tags", {})["service"] = settings.APP_NAME

    headers = event.get("request", {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in SCRUBBED_HEADERS:
                headers[name] = "[Filtered]"
    return event


def capture_exception(exc_info=None):
    """Report the current (or given) exception if Sentry is enabled."""
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc_info)
