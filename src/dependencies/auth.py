from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.security import decode_token


LOGGER = logging.getLogger(__name__)
BEARER = "Bearer"


def unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    """Return the canonical 401 response."""
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": BEARER},
    )


# Tokens are issued by the upstream identity provider, so OpenAPI documents a
# plain bearer scheme with no token endpoint.
bearer_scheme = HTTPBearer(
    auto_error=False,
    bearerFormat="JWT",
    description="HS256 token issued by the identity provider; `sub` is the user id.",
)


async def get_current_user_id(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> str:
    """
    Resolve the stable identifier of the authenticated caller from a JWT.

    Raises
    ------
    HTTPException(401)
        If the token is missing, malformed, expired, or has an empty subject.
    """
    if credentials is None:
        raise unauthorized("Not authenticated")

    # `decode_token` raises HTTPException(401) on failure; let it surface.
    token_data = decode_token(credentials.credentials)

    sub = (token_data.sub or "").strip()
    if not sub:
        LOGGER.debug("Token missing 'sub' claim")
        raise unauthorized()

    return sub


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
