"""
API authentication dependencies for StockTicker backend.
"""

import hmac
import os
from typing import Annotated

from fastapi import Header, HTTPException, status

from domain.constants import API_KEY_ENV


def require_api_key(
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """
    Validate API key from X-API-Key header.

    Dev-mode fallback: if STOCKTICKER_API_KEY is unset, auth is disabled.

    Raises:
        HTTPException: 401 if API key is invalid or missing (when auth is enabled)
    """
    expected_key = os.getenv(API_KEY_ENV)

    if not expected_key:
        return

    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-API-Key header",
        )

    # Constant-time comparison
    if not hmac.compare_digest(x_api_key, expected_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
