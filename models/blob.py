# models/blob.py
from sqlalchemy import Column, String, DateTime, Text, func
from database import Base


class StoredBlob(Base):
    """One key of the on-device store: the versioned snapshot, the legacy snapshot or the owner marker."""
    __tablename__ = 'personal_store_blobs'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f'<StoredBlob {self.key} ({len(self.value or "")} chars)>'
