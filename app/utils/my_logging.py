# app/utils/my_logging.py
"""Logging configuration shared by the API process and the Celery worker"""
import logging
import sys
from app.config.settings import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that drown out booking and sync logs
NOISY_LOGGERS = [
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "googleapiclient.discovery",
    "googleapiclient.discovery_cache",
    "google_auth_httplib2",
    "oauthlib",
    "twilio.http_client",
    "urllib3",
]


def setup_logging(verbose=True):
    """Configure application logging; verbose=False keeps warnings only"""
    settings = get_settings()

    if verbose:
        level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    quiet_level = logging.WARNING if verbose else logging.ERROR
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    if settings.DEBUG:
        # SQL echo through logging instead of engine echo=True
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
