import argparse
import logging
import signal
import sys
from typing import Optional, Sequence

from dependency_injector import providers

from trailcrawl import config
from trailcrawl.container import Container
from trailcrawl.domain.acquisition_result import TargetState
from trailcrawl.exceptions import AuditWriteFailure, ConfigurationError
from trailcrawl.services.operation_file_parser import OperationFileParser

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trailcrawl",
        description="Acquire content from seed URLs through a pool of egress identities.",
    )
    parser.add_argument("seeds", nargs="*", help="seed URLs (added to any listed in --config)")
    parser.add_argument("--config", help="operation YAML file with seeds, settings and identities")
    parser.add_argument("--audit-log", help="path of the JSONL audit trail")
    parser.add_argument("--store-dir", help="root directory of the artifact blob store")
    parser.add_argument("--database-url", help="SQLAlchemy URL for artifact metadata")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="logging level (default: %(default)s)")
    return parser


def configure_container(container: Container, args: argparse.Namespace) -> tuple:
    """Apply CLI arguments to `container`. Returns (operation name, seeds)."""
    if args.audit_log:
        container.config.TRAILCRAWL_AUDIT_LOG.from_value(args.audit_log)
    if args.store_dir:
        container.config.TRAILCRAWL_STORE_DIR.from_value(args.store_dir)
    if args.database_url:
        container.config.DATABASE_URL.from_value(args.database_url)

    name = "acquisition"
    seeds = []
    if args.config:
        parser = OperationFileParser(base_settings=container.settings())
        op = parser.load(args.config)
        container.settings.override(providers.Object(op.settings))
        container.identities.override(providers.Object(op.identities))
        name = op.name
        seeds.extend(op.seeds)
    seeds.extend(args.seeds)
    return name, seeds


def _install_sigint_handler(container: Container):
    registry = container.operation_registry()

    def _handler(signum, frame):
        logger.warning("Interrupt received; cancelling operation (interrupt again to abort)")
        registry.cancel_all()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    return signal.signal(signal.SIGINT, _handler)


def main(argv: Optional[Sequence[str]] = None, container: Optional[Container] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )

    if container is None:
        container = Container()

    try:
        name, seeds = configure_container(container, args)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2
    if not seeds:
        logger.error("No seed URLs given")
        return 2

    try:
        executor = container.acquisition_executor()
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2
    executor.operation_name = name

    previous = _install_sigint_handler(container)
    try:
        summary = executor.run(seeds)
    except AuditWriteFailure as e:
        logger.critical("Operation aborted: %s", e)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous)
        container.audit_recorder().close()
        container.http_service().close()

    print(f"operation {summary.operation_id}")
    print(f"  delivered:   {summary.delivered}")
    print(f"  duplicates:  {summary.duplicates}")
    print(f"  exhausted:   {summary.exhausted}")
    print(f"  cancelled:   {summary.cancelled}")
    print(f"  sink errors: {summary.sink_errors}")
    for result in summary.results:
        if result.state is TargetState.EXHAUSTED:
            print(f"  FAILED {result.target.uri} after {result.attempts} attempts ({result.failure.value if result.failure else 'unknown'})")
    return 0


if __name__ == '__main__':
    sys.exit(main())
