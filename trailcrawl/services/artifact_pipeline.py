import logging
from typing import Callable, Optional, Protocol, Sequence

from bs4 import BeautifulSoup

from trailcrawl.domain.artifact import Artifact

logger = logging.getLogger(__name__)


class ArtifactStage(Protocol):
    def __call__(self, artifact: Artifact) -> Artifact: ...


class NormalizeContentTypeStage:
    """Lower-case the media type, drop parameters, and record the charset separately."""

    def __call__(self, artifact: Artifact) -> Artifact:
        raw = artifact.content_type
        if not raw:
            return artifact
        media_type, _, params = raw.partition(";")
        out = artifact.with_content_type(media_type.strip().lower() or None)
        for param in params.split(";"):
            name, _, value = param.partition("=")
            if name.strip().lower() == "charset" and value.strip():
                out = out.with_metadata(charset=value.strip().strip('"').lower())
        return out


class HtmlTitleStage:
    def __init__(self, soup_factory: Optional[Callable[[str], BeautifulSoup]] = None, max_chars: int = 500):
        self._soup_factory = soup_factory or (lambda html: BeautifulSoup(html, "html.parser"))
        self.max_chars = max_chars

    def __call__(self, artifact: Artifact) -> Artifact:
        if "html" not in (artifact.content_type or ""):
            return artifact
        try:
            soup = self._soup_factory(artifact.content.decode(artifact.metadata.get("charset", "utf-8"), errors="replace"))
        except LookupError:
            soup = self._soup_factory(artifact.content.decode("utf-8", errors="replace"))
        if soup.title is None or not soup.title.get_text(strip=True):
            return artifact
        return artifact.with_metadata(title=soup.title.get_text(strip=True)[: self.max_chars])


def default_artifact_stages() -> list:
    return [NormalizeContentTypeStage(), HtmlTitleStage()]


class ArtifactPipeline:
    """Applies artifact stages in order; each stage returns a new Artifact.

    Stages never change content, so the content hash is stable across the chain.
    """

    def __init__(self, stages: Optional[Sequence[ArtifactStage]] = None):
        self.stages = list(stages) if stages is not None else default_artifact_stages()

    def process(self, artifact: Artifact) -> Artifact:
        for stage in self.stages:
            result = stage(artifact)
            if result.content_hash != artifact.content_hash:
                raise ValueError(f"{type(stage).__name__} changed artifact content")
            artifact = result
        return artifact
