"""
Optional Sentry error reporting
"""
import logging
import os

import sentry_sdk

logger = logging.getLogger(__name__)


def init_observability(app_name: str = "flowvault") -> bool:
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return False
    sentry_sdk.init(
        dsn=dsn,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        environment=os.getenv("APP_ENV", "development"),
        server_name=app_name,
    )
    logger.info("Sentry initialized")
    return True
