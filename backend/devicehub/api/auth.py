"""Signup, login, refresh-token rotation, logout and profile endpoints"""
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from devicehub.api.deps import get_auth_context, get_cache, get_optional_auth_context, get_token_service
from devicehub.cache import Cache
from devicehub.config import settings
from devicehub.database import get_db
from devicehub.middleware.rate_limit import auth_rate_limit
from devicehub.schemas.auth import (
    AccessTokenResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    SignupRequest,
    SignupResponse,
)
from devicehub.services import auth_service
from devicehub.utils.jwt_utils import AuthContext, TokenService

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )


@router.post("/signup", response_model=SignupResponse, status_code=201, dependencies=[Depends(auth_rate_limit)])
def signup(data: SignupRequest, db: Session = Depends(get_db)):
    """Register a new account (email must be unused)"""
    user = auth_service.register_user(db, data.name, data.email, data.password)
    return {"success": True, "message": "User registered successfully", "user": user}


@router.post("/login", response_model=LoginResponse, dependencies=[Depends(auth_rate_limit)])
def login(
    data: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """
    Exchange email and password for tokens.

    The access token is returned in the body; the refresh token is set as an
    httpOnly ``refreshToken`` cookie valid for 7 days.
    """
    user, access_token, refresh_token = auth_service.login_user(db, tokens, data.email, data.password)
    _set_refresh_cookie(response, refresh_token)
    return {"success": True, "accessToken": access_token, "user": user}


@router.post("/refresh-token", response_model=AccessTokenResponse, dependencies=[Depends(auth_rate_limit)])
def refresh_token(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """Rotate the refresh cookie: the old token is revoked and a new pair issued"""
    access_token, new_refresh_token = tokens.rotate(db, request.cookies.get(settings.REFRESH_COOKIE_NAME))
    _set_refresh_cookie(response, new_refresh_token)
    return {"success": True, "accessToken": access_token}


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    ctx: Optional[AuthContext] = Depends(get_optional_auth_context),
):
    """Revoke the refresh cookie (and the caller's access token) and clear the cookie.

    Always succeeds, even without a usable refresh token.
    """
    tokens.logout(db, request.cookies.get(settings.REFRESH_COOKIE_NAME), ctx)
    _clear_refresh_cookie(response)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/profile", response_model=ProfileResponse)
def profile(
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    return {"success": True, "user": auth_service.get_user_profile(db, cache, ctx.user_id)}
