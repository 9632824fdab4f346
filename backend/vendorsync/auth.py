"""API key authentication dependency."""

import secrets
from typing import Optional

from fastapi import Header, HTTPException

from vendorsync.config import settings


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify the X-API-Key header against ADMIN_API_KEY.

    - With no ADMIN_API_KEY configured every request is let through
      (local development) and None is returned.
    - Otherwise a missing or wrong key gets 401.
    """
    expected = settings.ADMIN_API_KEY
    if not expected:
        return None

    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

    return x_api_key
