from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header, HTTPException, status

from rewards_service.models.principal import Principal

logger = logging.getLogger(__name__)

_MAX_USER_ID_LENGTH = 128


def require_user(
    x_user_id: Annotated[str | None, Header()] = None,
) -> Principal:
    """Resolve the caller from the gateway-supplied ``X-User-Id`` header.

    Used as a FastAPI dependency on every engine endpoint.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        logger.warning("Request without X-User-Id rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )
    if len(user_id) > _MAX_USER_ID_LENGTH:
        logger.warning("Oversized X-User-Id rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity",
        )
    return Principal(user_id=user_id)
