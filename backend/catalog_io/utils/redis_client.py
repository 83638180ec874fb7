"""Redis client construction shared by the rate limiter and readiness checks."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis


def normalize_redis_url(url: str) -> str:
    """Hosted providers such as Upstash only accept TLS; upgrade plain URLs."""
    if ".upstash.io" in url and url.startswith("redis://"):
        return url.replace("redis://", "rediss://", 1)
    return url


def uses_tls(url: str) -> bool:
    return url.startswith("rediss://")


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Build a client from a URL, relaxing certificate checks for TLS endpoints."""
    url = normalize_redis_url(url)
    if uses_tls(url):
        kwargs.setdefault("ssl_cert_reqs", ssl.CERT_NONE)
    return Redis.from_url(url, **kwargs)
