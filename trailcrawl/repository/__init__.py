from .artifacts import ArtifactsRepository, StoredArtifact

__all__ = ["ArtifactsRepository", "StoredArtifact"]
