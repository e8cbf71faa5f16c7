"""JWT utilities: access/refresh token issuance, verification, revocation and rotation"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, NamedTuple, Optional, Tuple

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from devicehub.config import Settings
from devicehub.middleware.monitoring import record_auth_failure
from devicehub.models.blacklist_token import BlacklistToken
from devicehub.models.user import User
from devicehub.utils.dates import utcnow
from devicehub.utils.errors import ConfigurationError, TokenExpired, TokenInvalid, Unauthorized
from devicehub.utils.logger import logger

ACCESS = "access"
REFRESH = "refresh"


class AuthContext(NamedTuple):
    """Identity resolved from a verified access token, passed to handlers explicitly."""
    user_id: int
    email: str
    role: str
    jti: str
    exp: int


def user_claims(user: User) -> Dict[str, Any]:
    """Claims embedded in both token kinds for ``user``"""
    return {"sub": str(user.id), "id": user.id, "email": user.email, "role": user.role}


def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


class TokenService:
    """Issues, verifies and revokes access/refresh tokens.

    Each kind has its own signing secret, so a refresh token can never pass
    as an access token (and vice versa). Every token carries a random ``jti``
    which is the key used by the blacklist.
    """

    def __init__(
        self,
        access_secret: Optional[str],
        refresh_secret: Optional[str],
        algorithm: str = "HS256",
        access_ttl: int = 15 * 60,
        refresh_ttl: int = 7 * 24 * 3600,
    ):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            access_secret=settings.ACCESS_TOKEN_SECRET,
            refresh_secret=settings.REFRESH_TOKEN_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=settings.ACCESS_TOKEN_EXPIRE_SECONDS,
            refresh_ttl=settings.REFRESH_TOKEN_EXPIRE_SECONDS,
        )

    def _secret(self, kind: str) -> str:
        secret = self.access_secret if kind == ACCESS else self.refresh_secret
        if not secret:
            name = "ACCESS_TOKEN_SECRET" if kind == ACCESS else "REFRESH_TOKEN_SECRET"
            raise ConfigurationError(f"{name} is not configured")
        return secret

    def _ttl(self, kind: str) -> int:
        return self.access_ttl if kind == ACCESS else self.refresh_ttl

    # -----------------------------------------------------------------------
    # Token creation
    # -----------------------------------------------------------------------

    def _issue(self, claims: Dict[str, Any], kind: str) -> str:
        secret = self._secret(kind)
        now = _now_ts()
        payload: Dict[str, Any] = {
            **claims,
            "jti": uuid.uuid4().hex,
            "type": kind,
            "iat": now,
            "exp": now + self._ttl(kind),
        }
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def issue_access_token(self, claims: Dict[str, Any]) -> str:
        return self._issue(claims, ACCESS)

    def issue_refresh_token(self, claims: Dict[str, Any]) -> str:
        return self._issue(claims, REFRESH)

    def issue_pair(self, claims: Dict[str, Any]) -> Tuple[str, str]:
        return self.issue_access_token(claims), self.issue_refresh_token(claims)

    # -----------------------------------------------------------------------
    # Token verification
    # -----------------------------------------------------------------------

    def verify(self, token: str, kind: str) -> Dict[str, Any]:
        """Verify signature and expiry of a ``kind`` token and return its claims.

        Raises:
            ConfigurationError: the secret for ``kind`` is unset.
            TokenExpired: the token is past its ``exp``.
            TokenInvalid: malformed, tampered, signed with another secret,
                of the other kind, or missing its ``jti``.
        """
        secret = self._secret(kind)
        try:
            payload = jwt.decode(token, secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpired()
        except JWTError as exc:
            logger.debug(f"JWT decode failed: {exc}")
            raise TokenInvalid()

        if payload.get("type") != kind:
            raise TokenInvalid()
        if not payload.get("jti"):
            raise TokenInvalid("Token missing identifier")
        if payload.get("id") is None:
            raise TokenInvalid()
        return payload

    def authenticate(self, db: Session, token: str) -> AuthContext:
        """Verify an access token, check the blacklist and build the caller's context."""
        try:
            payload = self.verify(token, ACCESS)
        except TokenExpired:
            record_auth_failure("expired")
            raise
        except TokenInvalid:
            record_auth_failure("invalid")
            raise

        if self.is_revoked(db, payload["jti"], ACCESS):
            record_auth_failure("revoked")
            raise Unauthorized("Token revoked")

        return AuthContext(
            user_id=int(payload["id"]),
            email=payload.get("email", ""),
            role=payload.get("role", "user"),
            jti=payload["jti"],
            exp=int(payload["exp"]),
        )

    # -----------------------------------------------------------------------
    # Blacklist
    # -----------------------------------------------------------------------

    def revoke(self, db: Session, jti: str, user_id: int, kind: str, ttl_seconds: int) -> bool:
        """Blacklist ``jti`` for ``ttl_seconds``.

        A second revocation of the same ``(jti, kind)`` is rejected silently:
        nothing is written and False is returned.
        """
        if self.is_revoked(db, jti, kind):
            return False

        expires_at = utcnow() + timedelta(seconds=max(ttl_seconds, 0))
        db.add(BlacklistToken(jti=jti, token_type=kind, user_id=user_id, expires_at=expires_at))
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent revoke of the same token
            db.rollback()
            return False

        logger.info(
            f"Revoked {kind} token jti={jti}",
            extra={"user_id": user_id, "action": "revoke_token"},
        )
        return True

    def is_revoked(self, db: Session, jti: str, kind: str) -> bool:
        return db.query(BlacklistToken.id).filter(
            BlacklistToken.jti == jti,
            BlacklistToken.token_type == kind,
        ).first() is not None

    @staticmethod
    def remaining_ttl(payload: Dict[str, Any]) -> int:
        return max(int(payload["exp"]) - _now_ts(), 0)

    # -----------------------------------------------------------------------
    # Refresh rotation and logout
    # -----------------------------------------------------------------------

    def rotate(self, db: Session, old_refresh_token: str) -> Tuple[str, str]:
        """Exchange a refresh token for a new access/refresh pair.

        The presented token is blacklisted before the new pair is issued, so
        each refresh token works exactly once; a replay fails with 401.
        """
        if not old_refresh_token:
            raise Unauthorized("Refresh token missing")

        try:
            payload = self.verify(old_refresh_token, REFRESH)
        except (TokenExpired, TokenInvalid) as exc:
            record_auth_failure("invalid")
            raise Unauthorized(exc.message)

        jti = payload["jti"]
        user_id = int(payload["id"])

        if self.is_revoked(db, jti, REFRESH):
            record_auth_failure("revoked")
            logger.warning(
                "Refresh token replay detected",
                extra={"user_id": user_id, "action": "rotate_token"},
            )
            raise Unauthorized("Refresh token revoked")

        if not self.revoke(db, jti, user_id, REFRESH, self.remaining_ttl(payload)):
            raise Unauthorized("Refresh token revoked")

        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise Unauthorized("User not found")

        logger.info("Rotated refresh token", extra={"user_id": user_id, "action": "rotate_token"})
        return self.issue_pair(user_claims(user))

    def logout(self, db: Session, refresh_token: Optional[str], ctx: Optional[AuthContext] = None) -> None:
        """Revoke the presented refresh token and, when it belongs to the caller, their access token.

        Missing, invalid or expired refresh tokens still count as a successful
        logout; verification details are never reported back.
        """
        if not refresh_token:
            return

        try:
            payload = self.verify(refresh_token, REFRESH)
        except (TokenExpired, TokenInvalid):
            logger.info("Logout with unusable refresh token", extra={"action": "logout"})
            return

        user_id = int(payload["id"])
        self.revoke(db, payload["jti"], user_id, REFRESH, self.remaining_ttl(payload))

        # The access token's exact remaining lifetime is unknown here; use its full lifetime
        if ctx is not None and ctx.user_id == user_id:
            self.revoke(db, ctx.jti, ctx.user_id, ACCESS, self.access_ttl)

        logger.info("User logged out", extra={"user_id": user_id, "action": "logout"})


def purge_expired_tokens(db: Session) -> int:
    """Delete blacklist rows whose token has expired anyway."""
    removed = db.query(BlacklistToken).filter(BlacklistToken.expires_at < utcnow()).delete(
        synchronize_session=False
    )
    db.commit()
    return removed
