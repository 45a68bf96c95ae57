from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pytest
from azure.cosmos.exceptions import (  # type: ignore[import]
    CosmosHttpResponseError,
    CosmosResourceExistsError,
    CosmosResourceNotFoundError,
)

from universe import CosmicEntity, Galaxy
from universe.store import StoreBatch, StoreResponse


@dataclass
class Widget(CosmicEntity):
    code: str
    name: Optional[str] = None
    links: List[str] = field(default_factory=list)

    @property
    def partition_key(self) -> str:
        return self.code


def not_found() -> CosmosResourceNotFoundError:
    return CosmosResourceNotFoundError(
        status_code=404,
        message="Entity with the specified id does not exist in the system.",
    )


def throttled() -> CosmosHttpResponseError:
    return CosmosHttpResponseError(status_code=429, message="Request rate is large")


class _FakeContainer:
    """In-memory stand-in for :class:`universe.store.CosmosContainer`.

    Point operations work on ``documents`` keyed by ``(id, partition_key)``.
    Queries page through ``results`` using the start index as continuation,
    unless ``script`` holds a fixed list of batches.
    """

    def __init__(self) -> None:
        self.documents: Dict[Tuple[str, Any], Dict[str, Any]] = {}
        self.results: List[Dict[str, Any]] = []
        self.script: Optional[List[StoreBatch]] = None
        self.query_error: Optional[Exception] = None
        self.write_errors: Dict[str, Exception] = {}
        self.calls: List[Dict[str, Any]] = []
        self.point_charge = 1.0
        self.page_charge = 2.5
        self.closed = False
        self._lock = threading.Lock()

    def read(self, item_id: str, partition_key: Any) -> StoreResponse:
        doc = self.documents.get((item_id, partition_key))
        if doc is None:
            raise not_found()
        return StoreResponse(dict(doc), self.point_charge)

    def insert(self, document: Dict[str, Any]) -> StoreResponse:
        if document["id"] in self.write_errors:
            raise self.write_errors[document["id"]]
        key = (document["id"], document.get("partition_key"))
        with self._lock:
            if key in self.documents:
                raise CosmosResourceExistsError(status_code=409, message="Resource with specified id already exists.")
            self.documents[key] = dict(document, _etag="etag-1", _ts=1)
        return StoreResponse(dict(document), self.point_charge)

    def replace(self, item_id: str, document: Dict[str, Any]) -> StoreResponse:
        if item_id in self.write_errors:
            raise self.write_errors[item_id]
        key = (item_id, document.get("partition_key"))
        with self._lock:
            if key not in self.documents:
                raise not_found()
            self.documents[key] = dict(document, _etag="etag-2", _ts=2)
        return StoreResponse(dict(document), self.point_charge)

    def delete(self, item_id: str, partition_key: Any) -> StoreResponse:
        with self._lock:
            if (item_id, partition_key) not in self.documents:
                raise not_found()
            del self.documents[(item_id, partition_key)]
        return StoreResponse(None, self.point_charge)

    def query(
        self,
        text: str,
        parameters: Sequence[Dict[str, Any]] = (),
        page_size: Optional[int] = None,
        continuation: Optional[str] = None,
    ) -> Iterator[StoreBatch]:
        self.calls.append(
            {"text": text, "parameters": list(parameters), "page_size": page_size, "continuation": continuation}
        )
        return self._pages(page_size, continuation)

    def _pages(self, page_size: Optional[int], continuation: Optional[str]) -> Iterator[StoreBatch]:
        if self.query_error is not None:
            raise self.query_error
        if self.script is not None:
            begin = 0
            if continuation:
                begin = next(i + 1 for i, b in enumerate(self.script) if b.continuation == continuation)
            yield from self.script[begin:]
            return
        start = int(continuation) if continuation else 0
        size = page_size or 100
        while True:
            chunk = self.results[start : start + size]
            start += len(chunk)
            token = str(start) if start < len(self.results) else None
            yield StoreBatch(list(chunk), self.page_charge, token)
            if token is None:
                return

    def close(self) -> None:
        self.closed = True


class _FakeDatabase:
    def __init__(self) -> None:
        self.container = _FakeContainer()
        self.provisioned: List[Tuple[str, str]] = []

    def create_container_if_absent(self, name: str, partition_key_path: str) -> _FakeContainer:
        self.provisioned.append((name, partition_key_path))
        return self.container


@pytest.fixture
def database() -> _FakeDatabase:
    return _FakeDatabase()


@pytest.fixture
def container(database: _FakeDatabase) -> _FakeContainer:
    return database.container


@pytest.fixture
def galaxy(database: _FakeDatabase) -> Galaxy[Widget]:
    return Galaxy(database, "widgets", "/partition_key", Widget)


@pytest.fixture
def recording_galaxy(database: _FakeDatabase) -> Galaxy[Widget]:
    return Galaxy(database, "widgets", "/partition_key", Widget, record_query=True)


@pytest.fixture
def bulk_galaxy(database: _FakeDatabase) -> Galaxy[Widget]:
    return Galaxy(database, "widgets", "/partition_key", Widget, bulk_allowed=True, max_concurrency=4)
