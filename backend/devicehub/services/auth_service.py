"""Account registration, login and profile lookups"""
from typing import Any, Dict, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from devicehub.cache import Cache, get_cache_json, set_cache_json
from devicehub.config import settings
from devicehub.middleware.monitoring import record_auth_failure
from devicehub.models.user import User
from devicehub.utils.auth import burn_password_check, hash_password, normalize_email, verify_password
from devicehub.utils.errors import NotFound, Unauthorized, ValidationError
from devicehub.utils.jwt_utils import TokenService, user_claims
from devicehub.utils.logger import logger


def serialize_user(user: User) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}


def register_user(db: Session, name: str, email: str, password: str) -> User:
    """Create an account.

    Raises:
        ValidationError: the email is already registered.
    """
    email = normalize_email(email)
    if db.query(User.id).filter(User.email == email).first():
        raise ValidationError("Email already exists")

    user = User(name=name.strip(), email=email, password_hash=hash_password(password), role="user")
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Email already exists")
    db.refresh(user)

    logger.info("User registered", extra={"user_id": user.id, "action": "signup"})
    return user


def login_user(db: Session, tokens: TokenService, email: str, password: str) -> Tuple[User, str, str]:
    """Check credentials and issue an access/refresh pair.

    Unknown email and wrong password fail identically.
    """
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None:
        burn_password_check(password)
        record_auth_failure("bad_credentials")
        raise Unauthorized("Invalid email or password")

    if not verify_password(password, user.password_hash):
        record_auth_failure("bad_credentials")
        logger.warning("Failed login attempt", extra={"user_id": user.id, "action": "login"})
        raise Unauthorized("Invalid email or password")

    access_token, refresh_token = tokens.issue_pair(user_claims(user))
    logger.info("User logged in", extra={"user_id": user.id, "action": "login"})
    return user, access_token, refresh_token


def get_user_profile(db: Session, cache: Cache, user_id: int) -> Dict[str, Any]:
    key = f"user-profile:{user_id}"
    cached = get_cache_json(cache, key)
    if cached is not None:
        return cached

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")

    profile = serialize_user(user)
    set_cache_json(cache, key, profile, settings.USER_PROFILE_CACHE_TTL)
    return profile
