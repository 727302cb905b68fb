"""Main entry point for the Pangolin operator.

Runs the four reconcilers against an in-memory object store seeded from YAML
manifests, until SIGINT or SIGTERM.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from .client import ClientFactory, default_client_factory
from .config import Config, ConfigurationError
from .manager import Manager
from .registry import build_registry
from .spec_loader import ManifestLoadError, load_manifests, seed_store
from .store import InMemoryStore

# LogRecord attributes that are not structured context
_RESERVED_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

TEXT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json") -> None:
    """Configure root logging, JSON by default."""
    handler = logging.StreamHandler(sys.stdout)
    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Request lines would otherwise be logged for every control-plane call
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def run_operator(config: Config, client_factory: ClientFactory | None = None) -> int:
    """Seed the store, start the manager and block until a shutdown signal.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = logging.getLogger(__name__)
    store = InMemoryStore()

    if config.manifests_dir is not None:
        try:
            objects = load_manifests(config.manifests_dir)
        except ManifestLoadError as e:
            logger.error(
                "Manifest loading failed",
                extra={"error": str(e), "manifests_dir": str(config.manifests_dir)},
            )
            return 1
        created = await seed_store(store, objects)
        logger.info("Store seeded from manifests", extra={"objects": created})

    registry = build_registry(
        store, config, client_factory or default_client_factory(config.http_timeout_seconds)
    )
    manager = Manager(store, registry, config)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        manager.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await manager.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    logger.info("Operator stopped")
    return 0


async def main() -> int:
    """Load configuration from the environment and run the operator."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_level, config.log_format)
    logging.getLogger(__name__).info(
        "Starting Pangolin operator",
        extra={
            "namespace": config.watch_namespace or "*",
            "workers": config.max_concurrent_reconciles,
            "requeue_interval": config.requeue_interval_seconds,
        },
    )
    return await run_operator(config)


def run() -> None:
    """Entry point for ``python -m pangolin_operator.main``."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
