# pyright: reportMissingTypeStubs=false
"""Typed repository layer for Azure Cosmos DB containers.

Exposes the generic repository, its query options and the Cosmos client helpers.
"""
from .client import CosmosConfig, open_database
from .compiler import CompiledQuery, compile_query
from .entity import CosmicEntity, EntitySerializer
from .exceptions import (
    AlreadyExistsError,
    BulkOperationError,
    ConfigurationError,
    NotFoundError,
    TransportError,
    UniverseError,
    ValidationError,
)
from .galaxy import Galaxy
from .gravity import Gravity, RecordedQuery
from .options import Catalyst, Cluster, ColumnOptions, Direction, Operator, Page, SortOption, Where
from .store import CosmosContainer, CosmosDatabase, StoreBatch, StoreResponse

__all__ = [
    "CosmosConfig",
    "open_database",
    "CompiledQuery",
    "compile_query",
    "CosmicEntity",
    "EntitySerializer",
    "AlreadyExistsError",
    "BulkOperationError",
    "ConfigurationError",
    "NotFoundError",
    "TransportError",
    "UniverseError",
    "ValidationError",
    "Galaxy",
    "Gravity",
    "RecordedQuery",
    "Catalyst",
    "Cluster",
    "ColumnOptions",
    "Direction",
    "Operator",
    "Page",
    "SortOption",
    "Where",
    "CosmosContainer",
    "CosmosDatabase",
    "StoreBatch",
    "StoreResponse",
]
