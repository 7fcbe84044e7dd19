"""
Firebase ID token verification.

The mobile app signs users in with Firebase Auth and sends the ID token as
`Authorization: Bearer <jwt>`. Tokens are RS256 JWTs signed with Google's
securetoken keys:
- iss must be https://securetoken.google.com/<project-id>
- aud must be <project-id>
- sub is the Firebase UID
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict

import jwt
from jwt import PyJWKClient

from src.config import AuthSettings

ISSUER_PREFIX = "https://securetoken.google.com/"


@lru_cache(maxsize=4)
def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    return PyJWKClient(jwks_url)


def verify_firebase_id_token(token: str, settings: AuthSettings) -> Dict[str, Any]:
    """
    Verify a Firebase ID token and return its claims.

    Raises jwt.PyJWTError subclasses on invalid tokens and ValueError when
    no Firebase project is configured.
    """
    project_id = settings.firebase_project_id
    if not project_id:
        raise ValueError("FIREBASE_PROJECT_ID is not configured")

    signing_key = _get_jwks_client(settings.firebase_jwks_url).get_signing_key_from_jwt(token)

    claims = jwt.decode(
        token,
        signing_key.key,
        algorithms=["RS256"],
        audience=project_id,
        issuer=f"{ISSUER_PREFIX}{project_id}",
        options={"require": ["exp", "iat", "sub"]},
    )
    if not claims.get("sub"):
        raise jwt.InvalidTokenError("token has an empty subject")
    return claims
