"""Device log model"""
from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from devicehub.database import Base
from devicehub.utils.dates import utcnow


class DeviceLog(Base):
    """DeviceLog model - append-only telemetry reported by a device"""

    __tablename__ = "device_logs"
    __table_args__ = (
        Index("ix_device_logs_device_id_timestamp", "device_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    device_id = Column(Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)
    event = Column(String(255), nullable=False, index=True)
    value = Column(Float, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    device = relationship("Device", back_populates="logs")
