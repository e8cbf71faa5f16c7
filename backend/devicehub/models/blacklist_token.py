"""BlacklistToken model: jti denylist for access and refresh tokens"""
from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from devicehub.database import Base
from devicehub.utils.dates import utcnow


class BlacklistToken(Base):
    """Stores revoked token IDs (jti claims) per token type.

    A row means the token is revoked until ``expires_at``, which mirrors the
    token's own exp. The ``purge-expired-tokens`` job deletes rows past that
    point, standing in for a TTL index.
    """

    __tablename__ = "blacklist_tokens"
    __table_args__ = (
        UniqueConstraint("jti", "token_type", name="uq_blacklist_tokens_jti_type"),
    )

    id = Column(Integer, primary_key=True)
    jti = Column(String(64), nullable=False, index=True)
    token_type = Column(String(10), nullable=False)  # access | refresh
    user_id = Column(Integer, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
