from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String

from photovault.db.base import Base


class PhotoSet(Base):
    __tablename__ = "photo_sets"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    theme = Column(String, nullable=False)
    source_image_ref = Column(String, nullable=True)
    output_refs = Column(JSON, nullable=False, default=list)  # ordered storage references
    credits_used = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
