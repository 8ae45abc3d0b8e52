from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from photovault.db.base import Base


class Theme(Base):
    __tablename__ = "themes"

    id = Column(String, primary_key=True)  # slug, e.g. "linkedin"
    title = Column(String, nullable=False)
    prompt = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
