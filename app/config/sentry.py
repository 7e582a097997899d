"""Sentry error tracking configuration.

Events leaving the process are scrubbed of authentication headers and of any
extra/context key that looks like patient data (names, dates of birth, policy
numbers). The scrub lists are configurable per deployment.
"""
import os
from typing import Any, Dict, List, Optional

import sentry_sdk
from pydantic import Field
from pydantic_settings import BaseSettings
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.utils.logger import get_logger

logger = get_logger(__name__)


class SentrySettings(BaseSettings):
    """Sentry configuration settings."""

    dsn: Optional[str] = Field(None, alias="SENTRY_DSN")
    environment: str = Field("development", alias="SENTRY_ENVIRONMENT")
    release: Optional[str] = Field(None, alias="SENTRY_RELEASE")
    traces_sample_rate: float = Field(0.1, alias="SENTRY_TRACES_SAMPLE_RATE")
    send_default_pii: bool = Field(False, alias="SENTRY_SEND_DEFAULT_PII")
    enable_before_send_filter: bool = Field(True, alias="SENTRY_ENABLE_BEFORE_SEND_FILTER")

    sensitive_headers: str = Field(
        "authorization,cookie,x-api-key,x-auth-token",
        alias="SENTRY_SENSITIVE_HEADERS",
    )
    sensitive_keys: str = Field(
        "password,token,secret,patient,date_of_birth,policy_number,ssn",
        alias="SENTRY_SENSITIVE_KEYS",
    )

    # Alerting
    enable_alerts: bool = Field(True, alias="SENTRY_ENABLE_ALERTS")
    alert_on_errors: bool = Field(True, alias="SENTRY_ALERT_ON_ERRORS")
    alert_on_warnings: bool = Field(False, alias="SENTRY_ALERT_ON_WARNINGS")

    enable_tracing: bool = Field(True, alias="SENTRY_ENABLE_TRACING")
    enable_celery_integration: bool = Field(True, alias="SENTRY_ENABLE_CELERY_INTEGRATION")
    enable_sqlalchemy_integration: bool = Field(True, alias="SENTRY_ENABLE_SQLALCHEMY_INTEGRATION")
    enable_redis_integration: bool = Field(True, alias="SENTRY_ENABLE_REDIS_INTEGRATION")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


settings = SentrySettings()


def _split_csv(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


def init_sentry() -> None:
    """
    Initialize Sentry error tracking.

    Called from `setup_application()` and from the Celery app module so both
    API processes and workers report. Disabled when no DSN is configured and
    always skipped under TESTING=true.
    """
    if not settings.dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return

    if os.getenv("TESTING") == "true":
        logger.info("Skipping Sentry initialization in test environment")
        return

    integrations = [LoggingIntegration(level=None, event_level=None)]
    if settings.enable_celery_integration:
        integrations.append(CeleryIntegration())
    if settings.enable_sqlalchemy_integration:
        integrations.append(SqlalchemyIntegration())
    if settings.enable_redis_integration:
        integrations.append(RedisIntegration())

    sentry_sdk.init(
        dsn=settings.dsn,
        environment=settings.environment,
        release=settings.release,
        traces_sample_rate=settings.traces_sample_rate if settings.enable_tracing else 0.0,
        send_default_pii=settings.send_default_pii,
        integrations=integrations,
        before_send=filter_sensitive_data if settings.enable_before_send_filter else None,
    )

    logger.info(
        "Sentry initialized",
        environment=settings.environment,
        release=settings.release,
        tracing_enabled=settings.enable_tracing,
    )


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Strip authentication headers and patient-identifying keys from an event.

    Args:
        event: The Sentry event dictionary
        hint: Additional context about the event

    Returns:
        The scrubbed event
    """
    sensitive_headers = _split_csv(settings.sensitive_headers)
    sensitive_keys = _split_csv(settings.sensitive_keys)

    headers = event.get("request", {}).get("headers")
    if headers:
        for name in [h for h in headers if h.lower() in sensitive_headers]:
            headers.pop(name, None)

    if "user" in event:
        event["user"] = {"id": event["user"].get("id")}

    for section in ("extra", "contexts"):
        data = event.get(section)
        if not data:
            continue
        for key in [k for k in data if any(s in k.lower() for s in sensitive_keys)]:
            data.pop(key, None)

    return event


def capture_exception(
    exception: Exception,
    level: str = "error",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception to Sentry with additional context.

    Returns:
        Event ID if Sentry is configured, None otherwise
    """
    with sentry_sdk.push_scope() as scope:
        scope.set_level(level)
        for key, value in (context or {}).items():
            scope.set_context(key, value if isinstance(value, dict) else {"value": value})
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        return sentry_sdk.capture_exception(exception)


def add_breadcrumb(
    message: str,
    category: str = "default",
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """Add a breadcrumb describing what happened before a potential error."""
    sentry_sdk.add_breadcrumb(
        message=message,
        category=category,
        level=level,
        data=data or {},
    )
