from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Generic, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar

from azure.cosmos.exceptions import CosmosResourceNotFoundError  # type: ignore[import]

from .compiler import CompiledQuery, compile_query
from .entity import CosmicEntity, EntitySerializer, new_id, utc_now
from .exceptions import (
    AlreadyExistsError,
    BulkOperationError,
    ConfigurationError,
    NotFoundError,
    UniverseError,
    ValidationError,
)
from .gravity import Gravity, RecordedQuery
from .options import Cluster, ColumnOptions, Page, SortOption
from .store import StoreBatch

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=CosmicEntity)
R = TypeVar("R")

# Worker cap for bulk fan-out when none is configured
DEFAULT_MAX_CONCURRENCY = 32


class Galaxy(Generic[T]):
    """Typed repository over one Cosmos DB container.

    Subclass per entity type, or instantiate directly:

        class ItemRepository(Galaxy[Item]):
            def __init__(self, database) -> None:
                super().__init__(database, "items", "/partition_key", Item)

    Every operation returns a :class:`Gravity` with the RU it consumed.
    Store failures other than "not found" propagate as the SDK raised them.

    Parameters
    ----------
    database:
        Object exposing ``create_container_if_absent(name, partition_key_path)``,
        normally a :class:`universe.store.CosmosDatabase`.
    container:
        Container name; created when absent.
    partition_key:
        Partition key path of the container, e.g. ``/partition_key``.
    entity_type:
        Dataclass deriving from :class:`CosmicEntity`.
    record_query:
        Attach the rendered query and its bindings to every query ``Gravity``.
    bulk_allowed:
        Enable :meth:`create_many` and :meth:`modify_many`.
    max_concurrency:
        Worker cap for bulk fan-out; ``None`` uses ``DEFAULT_MAX_CONCURRENCY``.
    serializer:
        Entity/document converter; defaults to :class:`EntitySerializer`.
    """

    def __init__(
        self,
        database,
        container: str,
        partition_key: str,
        entity_type: Type[T],
        *,
        record_query: bool = False,
        bulk_allowed: bool = False,
        max_concurrency: Optional[int] = None,
        serializer: Optional[EntitySerializer] = None,
    ) -> None:
        if not container or not container.strip() or not partition_key or not partition_key.strip():
            raise ConfigurationError("Container name and PartitionKey are required")
        if max_concurrency is not None and max_concurrency <= 0:
            raise ConfigurationError("max_concurrency must be positive")

        self._entity_type = entity_type
        self._record_query = record_query
        self._bulk_allowed = bulk_allowed
        self._max_concurrency = max_concurrency
        self._serializer = serializer or EntitySerializer()
        self._container = database.create_container_if_absent(container.strip(), partition_key.strip())

    @property
    def entity_name(self) -> str:
        return self._entity_type.__name__

    @property
    def record_query(self) -> bool:
        return self._record_query

    @property
    def bulk_allowed(self) -> bool:
        return self._bulk_allowed

    # ---------- Lifecycle ----------
    def close(self) -> None:
        container, self._container = self._container, None
        if container is not None:
            container.close()

    def __enter__(self) -> "Galaxy[T]":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _store(self):
        if self._container is None:
            raise ConfigurationError(f"{type(self).__name__} is closed")
        return self._container

    # ---------- Helpers ----------
    def _recorded(self, query: CompiledQuery) -> Optional[RecordedQuery]:
        if not self._record_query:
            return None
        return RecordedQuery(query.text, query.parameters)

    def _to_entity(self, document) -> Optional[T]:
        return self._serializer.from_document(self._entity_type, document)

    def _missing(self) -> NotFoundError:
        return NotFoundError(f"{self.entity_name} does not exist.")

    def _batches(
        self,
        query: CompiledQuery,
        page_size: Optional[int] = None,
        continuation: Optional[str] = None,
    ) -> Iterator[StoreBatch]:
        return self._store().query(query.text, query.sdk_parameters(), page_size, continuation)

    @staticmethod
    def _stamp_new(entity: CosmicEntity) -> None:
        if not entity.id or not str(entity.id).strip():
            entity.id = new_id()
        entity.added_on = utc_now()

    # ---------- CRUD ----------
    def create(self, entity: T) -> Tuple[Gravity, str]:
        """Insert ``entity``, assigning ``id`` when blank and stamping ``added_on``."""
        self._stamp_new(entity)
        response = self._store().insert(self._serializer.to_document(entity))
        return Gravity(response.charge), entity.id

    def create_unique(self, clusters: Sequence[Cluster], entity: T) -> Tuple[Gravity, str]:
        """Insert ``entity`` only when nothing matches ``clusters``.

        The entity always receives a fresh id.

        Raises
        ------
        AlreadyExistsError
            When the filter matches an existing document.
        """
        query = compile_query(clusters)
        ru = 0.0
        try:
            for batch in self._batches(query):
                ru += batch.charge
                if batch.items:
                    raise AlreadyExistsError(f"{self.entity_name} already exists.")
        except CosmosResourceNotFoundError as exc:
            raise self._missing() from exc

        entity.id = None
        self._stamp_new(entity)
        response = self._store().insert(self._serializer.to_document(entity))
        return Gravity(ru + response.charge, None, self._recorded(query)), entity.id

    def modify(self, entity: T) -> Tuple[Gravity, T]:
        """Replace the stored document for ``entity`` and stamp ``modified_on``.

        Raises
        ------
        NotFoundError
            When no document has this id in this partition.
        """
        if not entity.id:
            raise self._missing()
        entity.modified_on = utc_now()
        try:
            response = self._store().replace(entity.id, self._serializer.to_document(entity))
        except CosmosResourceNotFoundError as exc:
            raise self._missing() from exc
        return Gravity(response.charge), self._to_entity(response.document) or entity

    def remove(self, item_id: str, partition_key) -> Gravity:
        try:
            response = self._store().delete(item_id, partition_key)
        except CosmosResourceNotFoundError as exc:
            raise self._missing() from exc
        return Gravity(response.charge)

    def get(self, item_id: str, partition_key) -> Tuple[Gravity, T]:
        try:
            response = self._store().read(item_id, partition_key)
        except CosmosResourceNotFoundError as exc:
            raise self._missing() from exc
        entity = self._to_entity(response.document)
        if entity is None:
            raise self._missing()
        return Gravity(response.charge), entity

    # ---------- Queries ----------
    def find(self, clusters: Sequence[Cluster], columns: Optional[Sequence[str]] = None) -> Tuple[Gravity, Optional[T]]:
        """Return the first document matching ``clusters``, or ``None``.

        Pages are read until the first match or the end of the results. Rows
        that carry none of the projected columns come back as ``{}`` and are
        skipped.
        """
        query = compile_query(clusters, ColumnOptions(names=columns) if columns else None)
        ru = 0.0
        found: Optional[T] = None
        try:
            for batch in self._batches(query):
                ru += batch.charge
                matches = self._entities(batch.items)
                if matches:
                    found = matches[0]
                    break
        except CosmosResourceNotFoundError:
            found = None
        return Gravity(ru, None, self._recorded(query)), found

    def list(
        self,
        clusters: Sequence[Cluster],
        columns: Optional[ColumnOptions] = None,
        sorting: Optional[Sequence[SortOption]] = None,
        groups: Optional[Sequence[str]] = None,
    ) -> Tuple[Gravity, List[T]]:
        """Return every document matching ``clusters``, draining all pages.

        Empty projection rows are dropped from the result.
        """
        query = compile_query(clusters, columns, sorting, groups)
        ru = 0.0
        documents: List[dict] = []
        try:
            for batch in self._batches(query):
                ru += batch.charge
                documents.extend(batch.items)
        except CosmosResourceNotFoundError:
            documents = []
        return Gravity(ru, None, self._recorded(query)), self._entities(documents)

    def paged(
        self,
        page: Page,
        clusters: Sequence[Cluster],
        columns: Optional[ColumnOptions] = None,
        sorting: Optional[Sequence[SortOption]] = None,
        groups: Optional[Sequence[str]] = None,
    ) -> Tuple[Gravity, List[T]]:
        """Return up to ``page.size`` documents and the token for the next page.

        Round trips are issued one at a time, each capped at the number of
        items still missing, until the page is full or the store reports no
        continuation. The returned ``Gravity.continuation_token`` is ``None``
        once the results are exhausted. Grouped queries cannot be resumed by
        the store, so they are read to the end in one call and never return a
        token. Empty projection rows are dropped, so a page may hold fewer
        items than the store returned for it.
        """
        if page is None or page.size is None or page.size <= 0:
            raise ValidationError(["Page size must be a positive integer"])
        query = compile_query(clusters, columns, sorting, groups)

        ru = 0.0
        documents: List[dict] = []
        token: Optional[str] = page.continuation_token or None
        try:
            if query.grouped:
                for batch in self._batches(query, page.size, token):
                    ru += batch.charge
                    documents.extend(batch.items)
                token = None
            else:
                while True:
                    remaining = page.size - len(documents)
                    batch = next(self._batches(query, remaining, token), None)
                    if batch is None:
                        token = None
                        break
                    ru += batch.charge
                    documents.extend(batch.items)
                    token = batch.continuation
                    if not token or len(documents) >= page.size:
                        break
        except CosmosResourceNotFoundError:
            documents, token = [], None

        return Gravity(ru, token, self._recorded(query)), self._entities(documents)

    def _entities(self, documents: Sequence[dict]) -> List[T]:
        entities = (self._to_entity(d) for d in documents)
        return [e for e in entities if e is not None]

    # ---------- Bulk operations ----------
    def create_many(self, entities: Sequence[T]) -> Tuple[Gravity, List[str]]:
        """Insert every entity concurrently.

        Ids and ``added_on`` are assigned before dispatch, so the returned ids
        follow the input order.

        Raises
        ------
        ConfigurationError
            When the repository was built without ``bulk_allowed``.
        BulkOperationError
            After every request settles, when at least one insert failed.
        """
        self._require_bulk()
        for entity in entities:
            self._stamp_new(entity)

        def _insert(entity: T) -> Tuple[float, str]:
            response = self._store().insert(self._serializer.to_document(entity))
            return response.charge, entity.id

        results, ru, failures = self._fan_out("create", entities, _insert)
        ids = [entity.id for entity in entities]
        if failures:
            raise self._bulk_error("create", failures, [results[i][1] for i in sorted(results)], ru)
        return Gravity(ru), ids

    def modify_many(self, entities: Sequence[T]) -> Tuple[Gravity, List[T]]:
        """Replace every entity concurrently; results follow the input order.

        Raises
        ------
        ConfigurationError
            When the repository was built without ``bulk_allowed``.
        BulkOperationError
            After every request settles, when at least one replace failed. A
            missing document is reported as :class:`NotFoundError`, any other
            store failure as :class:`UniverseError` carrying the store message;
            the original exception is chained as ``__cause__``.
        """
        self._require_bulk()

        def _replace(entity: T) -> Tuple[float, T]:
            entity.modified_on = utc_now()
            try:
                response = self._store().replace(entity.id, self._serializer.to_document(entity))
            except CosmosResourceNotFoundError as exc:
                raise NotFoundError(f"{self.entity_name} {entity.id} does not exist.") from exc
            except UniverseError:
                raise
            except Exception as exc:  # noqa: BLE001
                raise UniverseError(f"{self.entity_name} {entity.id} could not be modified: {exc}") from exc
            return response.charge, self._to_entity(response.document) or entity

        results, ru, failures = self._fan_out("modify", entities, _replace)
        if failures:
            succeeded = [entities[i].id for i in sorted(results)]
            raise self._bulk_error("modify", failures, succeeded, ru)
        return Gravity(ru), [results[i][1] for i in range(len(entities))]

    def _require_bulk(self) -> None:
        if not self._bulk_allowed:
            raise ConfigurationError(f"Bulk operations are not enabled for {type(self).__name__}")
        self._store()

    def _fan_out(
        self,
        action: str,
        entities: Sequence[T],
        work: Callable[[T], Tuple[float, R]],
    ) -> Tuple[Dict[int, Tuple[float, R]], float, List[Tuple[int, BaseException]]]:
        """Run ``work`` for each entity on a thread pool and wait for all of them.

        Returns ``(results_by_index, ru_of_successes, failures)``.
        """
        results: Dict[int, Tuple[float, R]] = {}
        failures: List[Tuple[int, BaseException]] = []
        ru = 0.0
        if not entities:
            return results, ru, failures

        max_workers = min(len(entities), self._max_concurrency or DEFAULT_MAX_CONCURRENCY)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {}
            for index, entity in enumerate(entities):
                try:
                    futures[executor.submit(work, entity)] = index
                except RuntimeError as exc:
                    # Nothing from here on was dispatched; report it with the rest
                    logger.error("bulk_%s_dispatch_failed: index=%d error=%s", action, index, str(exc))
                    failures.extend((pending, exc) for pending in range(index, len(entities)))
                    break
            for fut in as_completed(futures):
                index = futures[fut]
                try:
                    charge, value = fut.result()
                except Exception as exc:  # noqa: BLE001
                    logger.error("bulk_%s_failed: index=%d error=%s", action, index, str(exc))
                    failures.append((index, exc))
                    continue
                ru += charge
                results[index] = (charge, value)

        logger.info(
            "bulk_%s_done: total=%d ok=%d failed=%d ru=%.2f",
            action,
            len(entities),
            len(results),
            len(failures),
            ru,
        )
        return results, ru, failures

    def _bulk_error(
        self,
        action: str,
        failures: List[Tuple[int, BaseException]],
        succeeded: List[str],
        ru: float,
    ) -> BulkOperationError:
        failures.sort(key=lambda pair: pair[0])
        details = "\n".join(f"[{index}] {exc}" for index, exc in failures)
        message = f"Bulk {action} of {self.entity_name} failed for {len(failures)} item(s):\n{details}"
        return BulkOperationError(message, failures, succeeded, Gravity(ru))
