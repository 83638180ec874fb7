"""Request guards: origin checks and per-identity rate limits."""

from __future__ import annotations

import logging
from collections.abc import Callable
from urllib.parse import urlsplit

from fastapi import Depends, HTTPException, Request, status

from catalog_io.api.dependencies.auth import get_current_user
from catalog_io.core.config import get_settings
from catalog_io.core.errors import RateLimitExceeded
from catalog_io.services.rate_limiter import enforce, get_rate_limiter

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _origin_of(url: str) -> str | None:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def verify_origin(request: Request) -> None:
    """Reject cross-site requests.

    A present Origin must be allowed. State-changing requests must carry an
    allowed Origin or, failing that, an allowed Referer.
    """
    settings = get_settings()
    if not settings.csrf_protection:
        return
    allowed = set(settings.cors_origins)

    origin = request.headers.get("origin")
    if origin and origin not in allowed:
        logger.warning(f"Rejected request from origin {origin}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Origin not allowed")
    if request.method in SAFE_METHODS or origin:
        return

    referer = request.headers.get("referer")
    if not referer or _origin_of(referer) not in allowed:
        logger.warning(f"Rejected {request.method} {request.url.path} without a trusted origin")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing or invalid origin")


def _too_many_requests(exc: RateLimitExceeded) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=exc.message,
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )


def rate_limit(action: str, limit_setting: str) -> Callable[..., None]:
    """Build a dependency that counts one ``action`` for the current user."""

    def dependency(user_id: str = Depends(get_current_user)) -> None:
        settings = get_settings()
        limit = getattr(settings, limit_setting)
        try:
            enforce(get_rate_limiter(), f"{action}:{user_id}", limit, settings.rate_limit_window_seconds)
        except RateLimitExceeded as exc:
            raise _too_many_requests(exc) from exc

    return dependency


api_rate_limit = rate_limit("api", "api_rate_limit")
upload_rate_limit = rate_limit("upload", "upload_rate_limit")
export_rate_limit = rate_limit("export", "export_rate_limit")
