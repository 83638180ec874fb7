"""Celery application for background import processing."""

import ssl

from celery import Celery

from catalog_io.core.config import get_settings
from catalog_io.utils.redis_client import normalize_redis_url, uses_tls

settings = get_settings()

broker_url = normalize_redis_url(settings.celery_broker_url or settings.redis_url)
backend_url = normalize_redis_url(settings.celery_result_url or settings.redis_url)
is_ssl = uses_tls(broker_url) or uses_tls(backend_url)


def _with_ssl_param(url: str) -> str:
    # The Redis result backend reads ssl_cert_reqs from the URL during init
    if not uses_tls(url) or "ssl_cert_reqs" in url:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}ssl_cert_reqs=none"


if is_ssl:
    broker_url = _with_ssl_param(broker_url)
    backend_url = _with_ssl_param(backend_url)

celery_app = Celery(
    "catalog_io",
    broker=broker_url,
    backend=backend_url,
    include=["catalog_io.workers.tasks.process_import"],
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,
    "task_reject_on_worker_lost": True,
    "worker_prefetch_multiplier": 1,
    "task_time_limit": 3600,
    "task_soft_time_limit": 3300,
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "task_default_queue": "imports",
    "task_routes": {"catalog_io.workers.tasks.process_import": {"queue": "imports"}},
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict

celery_app.conf.update(celery_config)
