from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from azure.cosmos import CosmosClient  # type: ignore[import]

from .exceptions import ConfigurationError
from .store import CosmosDatabase

_TRUTHY = ("1", "true", "yes")


@dataclass(frozen=True)
class CosmosConfig:
    """Immutable configuration for Cosmos DB access.

    Attributes
    ----------
    endpoint: str
        Account URI, e.g. ``https://<account>.documents.azure.com:443/``.
    key: str
        Account key or resource token.
    database: str
        Database name holding the repository containers.
    record_query: bool
        Attach rendered queries and their bindings to every ``Gravity``.
    bulk_allowed: bool
        Enable ``create_many`` / ``modify_many``.
    max_concurrency: Optional[int]
        Worker cap for bulk fan-out; ``None`` uses the repository default of 32.
    """

    endpoint: str
    key: str
    database: str
    record_query: bool = False
    bulk_allowed: bool = False
    max_concurrency: Optional[int] = None

    @classmethod
    def from_env(
        cls,
        endpoint: Optional[str] = None,
        key: Optional[str] = None,
        database: Optional[str] = None,
    ) -> "CosmosConfig":
        """Build a config, filling anything not passed from the environment.

        Environment
        -----------
        - COSMOS_ENDPOINT, COSMOS_KEY, COSMOS_DATABASE (required unless passed)
        - UNIVERSE_RECORD_QUERY (optional, default false)
        - UNIVERSE_BULK_ALLOWED (optional, default false)
        - UNIVERSE_MAX_CONCURRENCY (optional, positive integer)
        """
        resolved_endpoint = endpoint or os.getenv("COSMOS_ENDPOINT")
        resolved_key = key or os.getenv("COSMOS_KEY")
        resolved_database = database or os.getenv("COSMOS_DATABASE")

        missing = [
            name
            for name, value in (
                ("COSMOS_ENDPOINT", resolved_endpoint),
                ("COSMOS_KEY", resolved_key),
                ("COSMOS_DATABASE", resolved_database),
            )
            if not value or not value.strip()
        ]
        if missing:
            raise ConfigurationError(f"Missing Cosmos settings: {', '.join(missing)}")

        return cls(
            endpoint=resolved_endpoint.strip(),
            key=resolved_key.strip(),
            database=resolved_database.strip(),
            record_query=_env_flag("UNIVERSE_RECORD_QUERY"),
            bulk_allowed=_env_flag("UNIVERSE_BULK_ALLOWED"),
            max_concurrency=_env_positive_int("UNIVERSE_MAX_CONCURRENCY"),
        )


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in _TRUTHY


def _env_positive_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def open_database(config: CosmosConfig) -> CosmosDatabase:
    """Create a client and return a handle for the configured database.

    Notes
    -----
    The returned :class:`CosmosDatabase` owns the client; close it (or use it
    as a context manager) once every repository built on it is closed.
    """
    client = CosmosClient(config.endpoint, credential=config.key)
    return CosmosDatabase(client.get_database_client(config.database), client=client)
