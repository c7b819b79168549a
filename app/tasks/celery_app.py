import logging
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import after_setup_logger
from app.core.config import settings
from app.core.logging_config import LOG_FORMAT


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "itravel",
    broker=_redis_url,
    backend=_redis_url,
    include=["app.tasks.jobs"],
)

celery.conf.timezone = "UTC"


@after_setup_logger.connect
def _use_app_log_format(logger, *args, **kwargs):
    for handler in logger.handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))


celery.conf.beat_schedule = {
    "process-email-queue-every-2-minutes": {
        "task": "app.tasks.jobs.process_email_queue",
        "schedule": 120.0,
        "kwargs": {"limit": 50},
    },
    "reconcile-pending-payments-every-10-minutes": {
        "task": "app.tasks.jobs.reconcile_pending_payments",
        "schedule": 600.0,
    },
    "reap-stale-bookings-hourly": {
        "task": "app.tasks.jobs.reap_stale_bookings",
        "schedule": 3600.0,
    },
}
