from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime, timezone
from schoolchat.core.database import Base


class SystemSettings(Base):
    """Singleton row; created from configuration defaults on first read."""
    __tablename__ = "settings"

    id               = Column(Integer, primary_key=True)
    school_name      = Column(String, nullable=False)
    theme_default    = Column(String, nullable=False, default="dark")
    retention_months = Column(Integer, nullable=False, default=12)
    updated_at       = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
