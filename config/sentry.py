# coding: utf-8
"""
Sentry configuration for error monitoring and tracking
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT


# Lead fields that identify the tenant; never leave the process
TENANT_CONTACT_FIELDS = ("tenant_name", "tenant_phone", "tenant_email")


def init_sentry() -> None:
    """
    Initialize Sentry SDK for error monitoring

    Features:
    - Automatic error capture and reporting
    - Performance monitoring (transactions)
    - Environment separation (dev/prod)
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),  # Database queries tracking
                FastApiIntegration(),
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,  # 10% in prod, 100% in dev
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """
    Filter/modify events before sending to Sentry

    Drops the service API key and any tenant contact details that ended up
    in request bodies or extras.
    """
    if event.get('request'):
        headers = event['request'].get('headers', {})
        for name in list(headers):
            if name.lower() == 'x-api-key':
                headers[name] = '[Filtered]'

        data = event['request'].get('data')
        if isinstance(data, dict):
            for field in TENANT_CONTACT_FIELDS:
                if field in data:
                    data[field] = '[Filtered]'

    extra = event.get('extra')
    if isinstance(extra, dict):
        for field in TENANT_CONTACT_FIELDS:
            if field in extra:
                extra[field] = '[Filtered]'

    return event


def capture_exception(error: Exception, **extra_context):
    """
    Manually capture an exception with extra context

    Args:
        error: Exception to capture
        extra_context: Additional context data
    """
    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)

        sentry_sdk.capture_exception(error)
