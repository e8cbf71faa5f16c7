"""Device model"""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from devicehub.database import Base
from devicehub.utils.dates import utcnow

DEVICE_TYPES = ("light", "thermostat", "meter", "camera", "lock")
DEVICE_STATUSES = ("active", "inactive")


class Device(Base):
    """Device model - a piece of hardware owned by exactly one user"""

    __tablename__ = "devices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)
    status = Column(String(20), default="inactive", nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    last_active_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    owner = relationship("User", back_populates="devices")
    logs = relationship("DeviceLog", back_populates="device", cascade="all, delete-orphan")
