"""Authenticated identity lookup.

Authentication itself happens upstream; the gateway forwards the verified
user id in a trusted header.
"""

from __future__ import annotations

import re

from fastapi import HTTPException, Request, status

from catalog_io.core.config import get_settings

USER_ID_RE = re.compile(r"^[A-Za-z0-9_.:@-]{1,64}$")


def get_current_user(request: Request) -> str:
    settings = get_settings()
    user_id = request.headers.get(settings.auth_user_header, "").strip()
    if not user_id or not USER_ID_RE.match(user_id):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user_id
