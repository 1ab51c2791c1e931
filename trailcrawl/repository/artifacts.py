from datetime import datetime
from typing import List, NamedTuple, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trailcrawl.db.models import ArtifactRecord as DBArtifact


class StoredArtifact(NamedTuple):
    """Metadata of a delivered artifact as readers see it."""
    content_hash: str
    blob_key: str
    size_bytes: int
    content_type: Optional[str]
    source_uri: str
    origin_uri: Optional[str]
    depth: Optional[int]
    attempt_ref: str
    operation_id: Optional[str]
    title: Optional[str]
    delivered_at: Optional[datetime]


class ArtifactsRepository:
    """Repository for delivered-artifact metadata.

    Requires an explicit `session_factory` (callable returning a `Session`).
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get_session(self) -> Session:
        return self.session_factory()

    def _to_domain(self, row: DBArtifact) -> StoredArtifact:
        return StoredArtifact(
            content_hash=row.content_hash,
            blob_key=row.blob_key,
            size_bytes=row.size_bytes,
            content_type=row.content_type,
            source_uri=row.source_uri,
            origin_uri=row.origin_uri,
            depth=row.depth,
            attempt_ref=row.attempt_ref,
            operation_id=row.operation_id,
            title=row.title,
            delivered_at=row.delivered_at,
        )

    def exists(self, content_hash: str) -> bool:
        with self.get_session() as session:
            q = select(DBArtifact.artifact_id).where(DBArtifact.content_hash == content_hash)
            return session.execute(q).first() is not None

    def get(self, content_hash: str) -> Optional[StoredArtifact]:
        with self.get_session() as session:
            q = select(DBArtifact).where(DBArtifact.content_hash == content_hash)
            row = session.execute(q).scalars().first()
            return self._to_domain(row) if row else None

    def insert(self, record: StoredArtifact) -> bool:
        """Insert the metadata row. Returns False if the hash is already present."""
        with self.get_session() as session:
            row = DBArtifact(
                content_hash=record.content_hash,
                blob_key=record.blob_key,
                size_bytes=record.size_bytes,
                content_type=record.content_type,
                source_uri=record.source_uri,
                origin_uri=record.origin_uri,
                depth=record.depth,
                attempt_ref=record.attempt_ref,
                operation_id=record.operation_id,
                title=record.title,
            )
            if record.delivered_at is not None:
                row.delivered_at = record.delivered_at
            session.add(row)
            # Another worker or process may have delivered the same hash concurrently.
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def count(self, operation_id: Optional[str] = None) -> int:
        with self.get_session() as session:
            q = select(func.count(DBArtifact.artifact_id))
            if operation_id is not None:
                q = q.where(DBArtifact.operation_id == operation_id)
            return int(session.execute(q).scalar_one())

    def list_artifacts(self, limit: Optional[int] = None, operation_id: Optional[str] = None) -> List[StoredArtifact]:
        with self.get_session() as session:
            q = select(DBArtifact).order_by(DBArtifact.artifact_id)
            if operation_id is not None:
                q = q.where(DBArtifact.operation_id == operation_id)
            if limit:
                q = q.limit(limit)
            return [self._to_domain(r) for r in session.execute(q).scalars().all()]
