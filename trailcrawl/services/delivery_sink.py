import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from trailcrawl.domain.acquisition_result import DeliveryStatus
from trailcrawl.domain.artifact import Artifact
from trailcrawl.exceptions import SinkError
from trailcrawl.repository.artifacts import ArtifactsRepository, StoredArtifact
from trailcrawl.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)


def blob_key_for(content_hash: str) -> str:
    return f"sha256/{content_hash[:2]}/{content_hash}"


class DeliverySink:
    """Persist artifacts exactly once per content hash.

    Content is written to the blob store first, then the metadata row is
    committed. Readers treat an artifact as present only once its row exists,
    so a crash between the two leaves an orphan blob but never a half
    delivered artifact; the next delivery of that hash rewrites the blob and
    commits the row.
    """

    def __init__(self, blob_store: BlobStore, artifacts_repo: ArtifactsRepository, operation_id: Optional[str] = None):
        self.blob_store = blob_store
        self.artifacts_repo = artifacts_repo
        self.operation_id = operation_id
        self._lock = threading.Lock()

    def deliver(self, artifact: Artifact) -> DeliveryStatus:
        """Store `artifact`. Returns ACK, DUPLICATE, or ERROR."""
        try:
            return self.deliver_or_raise(artifact)
        except SinkError as e:
            logger.error("Delivery failed for %s: %s", artifact.target.uri, e.original)
            return DeliveryStatus.ERROR

    def deliver_or_raise(self, artifact: Artifact) -> DeliveryStatus:
        content_hash = artifact.content_hash
        with self._lock:
            try:
                if self.artifacts_repo.exists(content_hash):
                    logger.info("Duplicate artifact %s from %s", content_hash[:12], artifact.target.uri)
                    return DeliveryStatus.DUPLICATE

                key = blob_key_for(content_hash)
                self.blob_store.put(key, artifact.content)
                inserted = self.artifacts_repo.insert(
                    StoredArtifact(
                        content_hash=content_hash,
                        blob_key=key,
                        size_bytes=artifact.size,
                        content_type=artifact.content_type,
                        source_uri=artifact.target.uri,
                        origin_uri=artifact.target.origin,
                        depth=artifact.target.depth,
                        attempt_ref=artifact.attempt_ref,
                        operation_id=self.operation_id,
                        title=artifact.metadata.get("title"),
                        delivered_at=datetime.now(timezone.utc),
                    )
                )
            except Exception as e:
                raise SinkError(content_hash, e) from e

        if not inserted:
            logger.info("Duplicate artifact %s from %s (concurrent delivery)", content_hash[:12], artifact.target.uri)
            return DeliveryStatus.DUPLICATE
        logger.info("Delivered artifact %s (%d bytes) from %s", content_hash[:12], artifact.size, artifact.target.uri)
        return DeliveryStatus.ACK

    def is_delivered(self, content_hash: str) -> bool:
        return self.artifacts_repo.exists(content_hash)

    def get(self, content_hash: str) -> Optional[bytes]:
        """Content of a delivered artifact, for downstream metadata extractors."""
        record = self.artifacts_repo.get(content_hash)
        if record is None:
            return None
        return self.blob_store.get(record.blob_key)
