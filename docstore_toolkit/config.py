import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Ceiling on write operations inside one atomic unit
MAX_BATCH_OPERATIONS = 500
# Ceiling on values for in / not-in / array-contains-any filters
MAX_DISJUNCTION_VALUES = 30

DEFAULT_SERVER_TIMEOUT_MS = 5000


def parse_boolean(value: Optional[str], default: bool = False) -> bool:
    """Parse an environment flag; accepts true/yes/1/on in any case."""
    if not value:
        return default
    return value.strip().lower() in ("true", "yes", "1", "on")


@dataclass
class StoreSettings:
    """Connection settings for the MongoDB-backed document store.

    Args:
        mongo_uri: The MongoDB connection URI (e.g. "mongodb://...", "mongodb+srv://...").
        db_name: The name of the target database.
        use_transactions: Commit each atomic unit inside a multi-document
            transaction. Standalone servers do not support transactions; with
            False, batches fall back to an ordered bulk write that is not atomic.
        server_selection_timeout_ms: Timeout for the initial connection attempt.
    """
    mongo_uri: str
    db_name: str
    use_transactions: bool = True
    server_selection_timeout_ms: int = DEFAULT_SERVER_TIMEOUT_MS

    def __post_init__(self):
        if not self.mongo_uri:
            raise ConfigurationError("mongo_uri cannot be empty.")
        if not self.db_name:
            raise ConfigurationError("db_name cannot be empty.")
        if self.server_selection_timeout_ms <= 0:
            raise ConfigurationError("server_selection_timeout_ms must be positive.")

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "StoreSettings":
        """Build settings from MONGODB_URI, MONGODB_DATABASE and DOCSTORE_* variables.

        A .env file is loaded first; variables already set in the process
        environment win.
        """
        load_dotenv(dotenv_path)

        mongo_uri = os.getenv("MONGODB_URI")
        db_name = os.getenv("MONGODB_DATABASE")
        if not mongo_uri:
            raise ConfigurationError("MONGODB_URI environment variable is required")
        if not db_name:
            raise ConfigurationError("MONGODB_DATABASE environment variable is required")

        raw_timeout = os.getenv("DOCSTORE_SERVER_TIMEOUT_MS")
        try:
            timeout_ms = int(raw_timeout) if raw_timeout else DEFAULT_SERVER_TIMEOUT_MS
        except ValueError as e:
            raise ConfigurationError(f"DOCSTORE_SERVER_TIMEOUT_MS must be an integer, got {raw_timeout!r}") from e

        settings = cls(
            mongo_uri=mongo_uri,
            db_name=db_name,
            use_transactions=parse_boolean(os.getenv("DOCSTORE_USE_TRANSACTIONS"), default=True),
            server_selection_timeout_ms=timeout_ms,
        )
        logger.info(f"Loaded store settings for database '{settings.db_name}' "
                    f"(transactions={'on' if settings.use_transactions else 'off'})")
        return settings
