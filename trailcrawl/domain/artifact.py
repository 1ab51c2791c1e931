import hashlib
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping, Optional

from trailcrawl.domain.target import Target


def content_hash_of(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class Artifact:
    """Fetched content addressed by its SHA-256 hash."""

    content: bytes
    target: Target
    attempt_ref: str
    content_type: Optional[str] = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    content_hash: str = field(init=False)

    def __post_init__(self):
        if not isinstance(self.content, (bytes, bytearray)):
            raise TypeError("artifact content must be bytes")
        object.__setattr__(self, "content", bytes(self.content))
        object.__setattr__(self, "content_hash", content_hash_of(self.content))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def size(self) -> int:
        return len(self.content)

    def with_metadata(self, **values: str) -> "Artifact":
        merged = dict(self.metadata)
        merged.update(values)
        return replace(self, metadata=merged)

    def with_content_type(self, content_type: Optional[str]) -> "Artifact":
        return replace(self, content_type=content_type)

    def __repr__(self):
        return f"<Artifact {self.content_hash[:12]} size={self.size} from={self.target.uri}>"
