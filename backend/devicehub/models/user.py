"""User model"""
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from devicehub.database import Base
from devicehub.utils.dates import utcnow


class User(Base):
    """An account that owns devices.

    ``id`` is allocated by the database (AUTOINCREMENT on SQLite, a sequence on
    PostgreSQL) so ids are never reused after a delete.
    """

    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)  # stored lower-cased
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="user", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    devices = relationship("Device", back_populates="owner", cascade="all, delete-orphan")
