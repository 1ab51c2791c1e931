from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from trailcrawl.db.models import Base
from trailcrawl.repository.artifacts import ArtifactsRepository, StoredArtifact


def _repo():
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    return ArtifactsRepository(sessionmaker(bind=engine, future=True))


def _stored(content_hash="a" * 64, operation_id="op-1", delivered_at=None):
    return StoredArtifact(
        content_hash=content_hash,
        blob_key=f"sha256/{content_hash[:2]}/{content_hash}",
        size_bytes=10,
        content_type="text/html",
        source_uri="https://example.com/",
        origin_uri=None,
        depth=0,
        attempt_ref="https://example.com/#2",
        operation_id=operation_id,
        title="Example",
        delivered_at=delivered_at,
    )


def test_insert_and_get():
    repo = _repo()
    when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert repo.insert(_stored(delivered_at=when))
    got = repo.get("a" * 64)
    assert got.attempt_ref == "https://example.com/#2"
    assert got.title == "Example"
    assert got.delivered_at.replace(tzinfo=None) == when.replace(tzinfo=None)
    assert repo.exists("a" * 64)
    assert not repo.exists("b" * 64)


def test_duplicate_hash_returns_false():
    repo = _repo()
    assert repo.insert(_stored())
    assert not repo.insert(_stored(operation_id="op-2"))
    assert repo.count() == 1


def test_count_and_list_by_operation():
    repo = _repo()
    repo.insert(_stored("a" * 64, "op-1"))
    repo.insert(_stored("b" * 64, "op-2"))
    repo.insert(_stored("c" * 64, "op-2"))
    assert repo.count() == 3
    assert repo.count(operation_id="op-2") == 2
    listed = repo.list_artifacts(operation_id="op-2")
    assert [a.content_hash[0] for a in listed] == ["b", "c"]
    assert len(repo.list_artifacts(limit=1)) == 1
