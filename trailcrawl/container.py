"""Dependency injection container for the application."""
import uuid

from dependency_injector import containers, providers
from sqlalchemy.orm import sessionmaker

from trailcrawl import config as env
from trailcrawl.db.engine import init_schema, make_engine
from trailcrawl.domain.settings import AcquisitionSettings
from trailcrawl.domain.visited_tracker import VisitedTracker
from trailcrawl.repository.artifacts import ArtifactsRepository
from trailcrawl.services.acquisition_executor import AcquisitionExecutor
from trailcrawl.services.artifact_pipeline import ArtifactPipeline
from trailcrawl.services.audit_recorder import AuditRecorder, JsonlAuditLog
from trailcrawl.services.delivery_sink import DeliverySink
from trailcrawl.services.frontier import Frontier
from trailcrawl.services.http_service import HttpService
from trailcrawl.services.identity_pool import IdentityPool
from trailcrawl.services.link_extractor import LinkExtractor
from trailcrawl.services.operation_file_parser import default_identities
from trailcrawl.services.operation_registry import InMemoryOperationRegistry
from trailcrawl.services.request_executor import RequestExecutor
from trailcrawl.services.retry_controller import RetryController
from trailcrawl.storage.blob_store import FileSystemBlobStore


# Environment variables used by the container (read via `trailcrawl.config` helpers).
#
# Acquisition policy options (TRAILCRAWL_MAX_ATTEMPTS_PER_TARGET and friends) are
# read by `AcquisitionSettings.from_env()`; an operation file overrides them.
#
# DATABASE_URL (str | optional)
#   SQLAlchemy URL for the artifact metadata table. Defaults to a local SQLite file.
#
# TRAILCRAWL_AUDIT_LOG (str, default: "audit.jsonl")
#   Newline-delimited JSON audit trail, appended to and fsynced per batch.
#
# TRAILCRAWL_STORE_DIR (str, default: "artifacts")
#   Root directory of the content-addressed blob store.
#
# TRAILCRAWL_MAX_BODY_BYTES (int | optional)
#   Upper bound on a response body; larger responses are cut off as network errors.
#
# TRAILCRAWL_REGISTRY_MAX_COMPLETED (int, default: 100)
#   Finished operations kept in the in-memory registry.
ENV = {
    "DATABASE_URL": env.get_optional_str_env("DATABASE_URL"),
    "TRAILCRAWL_AUDIT_LOG": env.get_str_env("TRAILCRAWL_AUDIT_LOG", "audit.jsonl"),
    "TRAILCRAWL_STORE_DIR": env.get_str_env("TRAILCRAWL_STORE_DIR", "artifacts"),
    "TRAILCRAWL_MAX_BODY_BYTES": env.get_optional_int_env("TRAILCRAWL_MAX_BODY_BYTES"),
    "TRAILCRAWL_REGISTRY_MAX_COMPLETED": env.get_int_env("TRAILCRAWL_REGISTRY_MAX_COMPLETED", 100),
}


def _new_operation_id() -> str:
    return str(uuid.uuid4())


class Container(containers.DeclarativeContainer):
    """Dependency injection container for TrailCrawl.

    `settings` and `identities` are overridden by the CLI when an operation
    file is given. One container serves one operation.
    """

    config = providers.Configuration(default=ENV)

    settings = providers.Singleton(AcquisitionSettings.from_env)
    identities = providers.Singleton(default_identities)
    operation_id = providers.Singleton(_new_operation_id)

    # Database engine - Singleton to reuse connection pool; schema created on first use
    db_engine = providers.Singleton(
        init_schema,
        providers.Singleton(make_engine, database_url=config.DATABASE_URL),
    )
    session_factory = providers.Factory(
        sessionmaker,
        bind=db_engine,
        future=True,
    )

    artifacts_repository = providers.Singleton(
        ArtifactsRepository,
        session_factory=session_factory,
    )

    blob_store = providers.Singleton(
        FileSystemBlobStore,
        root=config.TRAILCRAWL_STORE_DIR.as_(str),
    )

    operation_registry = providers.Singleton(
        InMemoryOperationRegistry,
        max_completed_records=config.TRAILCRAWL_REGISTRY_MAX_COMPLETED.as_(int),
    )

    identity_pool = providers.Singleton(
        IdentityPool,
        identities=identities,
        settings=settings,
    )

    http_service = providers.Singleton(
        HttpService,
        max_body_bytes=config.TRAILCRAWL_MAX_BODY_BYTES,
    )

    request_executor = providers.Singleton(
        RequestExecutor,
        http_service=http_service,
        settings=settings,
    )

    audit_log = providers.Singleton(
        JsonlAuditLog,
        path=config.TRAILCRAWL_AUDIT_LOG.as_(str),
    )

    audit_recorder = providers.Singleton(
        AuditRecorder,
        audit_log=audit_log,
        operation_id=operation_id,
    )

    retry_controller = providers.Singleton(
        RetryController,
        pool=identity_pool,
        executor=request_executor,
        recorder=audit_recorder,
        settings=settings,
    )

    frontier = providers.Singleton(
        Frontier,
        settings=settings,
        visited_tracker=providers.Factory(VisitedTracker),
    )

    delivery_sink = providers.Singleton(
        DeliverySink,
        blob_store=blob_store,
        artifacts_repo=artifacts_repository,
        operation_id=operation_id,
    )

    artifact_pipeline = providers.Singleton(ArtifactPipeline)
    link_extractor = providers.Singleton(LinkExtractor)

    acquisition_executor = providers.Singleton(
        AcquisitionExecutor,
        settings=settings,
        pool=identity_pool,
        request_executor=request_executor,
        recorder=audit_recorder,
        sink=delivery_sink,
        frontier=frontier,
        link_extractor=link_extractor,
        artifact_pipeline=artifact_pipeline,
        controller=retry_controller,
        registry=operation_registry,
    )
