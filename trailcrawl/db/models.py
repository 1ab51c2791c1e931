from __future__ import annotations


from sqlalchemy import Column, Integer, Text, DateTime, String, func
from sqlalchemy.orm import declarative_base


Base = declarative_base()


class ArtifactRecord(Base):
    """Metadata row for a delivered artifact. Its presence marks the artifact as delivered."""

    __tablename__ = "artifacts"

    artifact_id = Column(Integer, primary_key=True)
    content_hash = Column(String(64), unique=True, nullable=False, index=True)
    blob_key = Column(Text, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    content_type = Column(Text, nullable=True)
    source_uri = Column(Text, nullable=False)
    origin_uri = Column(Text, nullable=True)
    depth = Column(Integer, nullable=True)
    attempt_ref = Column(Text, nullable=False)
    operation_id = Column(Text, nullable=True)
    title = Column(Text, nullable=True)
    delivered_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
