from .models import Base, ArtifactRecord
from .engine import make_engine, init_schema

__all__ = [
    "Base",
    "ArtifactRecord",
    "make_engine",
    "init_schema",
]
