"""
Request authentication.

get_current_user_id resolves the Firebase UID of the caller. In DEV_MODE
(blocked in production) the bearer value itself is taken as the UID, so
local clients and tests can act as any user.
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.exceptions import AuthenticationError, ErrorCode
from src.config import get_settings
from src.utils.logging import mask_user_id, set_request_context

from .firebase_jwt import verify_firebase_id_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_dev_mode_warning_logged = False


def _dev_mode_active() -> bool:
    global _dev_mode_warning_logged

    settings = get_settings()
    if not settings.is_dev_mode:
        return False
    if settings.is_production:
        logger.error("DEV_MODE was requested but is blocked in production")
        return False
    if not _dev_mode_warning_logged:
        logger.warning("DEV_MODE is enabled - bearer tokens are trusted as UIDs")
        _dev_mode_warning_logged = True
    return True


async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Authenticate the request and return the caller's UID."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")

    token = credentials.credentials

    if _dev_mode_active():
        user_id = token
    else:
        try:
            claims = verify_firebase_id_token(token, get_settings().auth)
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Session expired, please sign in again", error_code=ErrorCode.EXPIRED_TOKEN)
        except (jwt.PyJWTError, ValueError) as e:
            raise AuthenticationError(
                "Invalid authentication",
                error_code=ErrorCode.INVALID_TOKEN,
                internal_message=str(e),
            )
        user_id = claims["sub"]

    request.state.user_id = user_id
    set_request_context(user_id=user_id)
    logger.debug(f"Authenticated user {mask_user_id(user_id)}")
    return user_id


__all__ = ["get_current_user_id", "verify_firebase_id_token"]
