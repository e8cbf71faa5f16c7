"""API dependencies for authentication.

Every authenticated endpoint receives an explicit :class:`AuthContext`
resolved from ``Authorization: Bearer <access token>``. The token must verify
against the access secret and its ``jti`` must not be blacklisted.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from devicehub.cache import Cache
from devicehub.database import get_db
from devicehub.jobs.engine import JobEngine
from devicehub.utils.errors import Unauthorized
from devicehub.utils.jwt_utils import AuthContext, TokenService

_bearer_scheme = HTTPBearer(auto_error=False)


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_cache(request: Request) -> Cache:
    return request.app.state.cache


def get_job_engine(request: Request) -> JobEngine:
    return request.app.state.jobs


def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> AuthContext:
    """Require a valid, non-revoked access token.

    Raises:
        Unauthorized: no bearer token, or it is expired, invalid or revoked.
        ConfigurationError: the access secret is not configured.
    """
    if not credentials:
        raise Unauthorized("Unauthorized: No token provided")
    return tokens.authenticate(db, credentials.credentials)


def get_optional_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> Optional[AuthContext]:
    """Resolve the caller's identity if a usable access token is present, else None."""
    if not credentials:
        return None
    try:
        return tokens.authenticate(db, credentials.credentials)
    except Unauthorized:
        return None
