import sys

import structlog
from pymongo.errors import PyMongoError

from .config import ConfigError, load_settings, redact_uri
from .database import PostStore
from .main import configure_structlog

logger = structlog.get_logger()


def main():
    """
    Verify the configured MongoDB deployment before starting the server.

    Connects with MONGODB_URI, writes and deletes a throwaway document, and
    exits 1 on any configuration or connection failure.
    """
    try:
        settings = load_settings()
    except ConfigError as exc:
        configure_structlog()
        logger.error("config_invalid", error=str(exc))
        sys.exit(1)

    configure_structlog(settings.log_level)
    logger.info(
        "check_started",
        uri=redact_uri(settings.mongodb_uri),
        is_atlas=settings.mongodb_uri.startswith("mongodb+srv://"),
    )

    try:
        store = PostStore.connect(settings.mongodb_uri, settings.db_name)
    except PyMongoError as exc:
        logger.error("check_connect_failed", error=str(exc))
        sys.exit(1)

    try:
        doc_id = store.check_round_trip()
    except PyMongoError as exc:
        logger.error("check_round_trip_failed", error=str(exc))
        sys.exit(1)
    finally:
        store.close()

    logger.info("check_passed", database=settings.db_name, document_id=doc_id)


if __name__ == "__main__":
    main()
