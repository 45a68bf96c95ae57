from __future__ import annotations

import contextlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Mapping, Optional, Sequence

from azure.cosmos import PartitionKey  # type: ignore[import]
from azure.cosmos.http_constants import HttpHeaders  # type: ignore[import]

from .types import Document, SdkParameter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreResponse:
    """Result of a point operation: the returned document and its RU charge."""

    document: Optional[Document]
    charge: float = 0.0


@dataclass(frozen=True)
class StoreBatch:
    """One round trip of a query."""

    items: List[Document] = field(default_factory=list)
    charge: float = 0.0
    continuation: Optional[str] = None


def request_charge(headers: Optional[Mapping[str, Any]]) -> float:
    if not headers:
        return 0.0
    raw = headers.get(HttpHeaders.RequestCharge)
    try:
        return float(raw) if raw is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


class _ChargeHook:
    """``response_hook`` capturing the request charge of a single SDK call."""

    def __init__(self) -> None:
        self.charge = 0.0

    def __call__(self, headers: Mapping[str, Any], _result: Any) -> None:
        self.charge = request_charge(headers)


class _PageChargeHook:
    """``response_hook`` for queries; keeps the charge of every call it sees."""

    def __init__(self) -> None:
        self.charges: List[float] = []

    def __call__(self, headers: Mapping[str, Any], _result: Any) -> None:
        self.charges.append(request_charge(headers))


class _ChargeGate:
    """Shared/exclusive gate over one client's ``last_response_headers``.

    Point operations enter shared and run together. A query page fetch enters
    exclusive, so no other request on the client can overwrite the headers
    between the fetch and the read of its charge. Waiting page fetches block
    new point operations.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._active = 0
        self._exclusive = False
        self._waiting = 0

    @contextlib.contextmanager
    def shared(self) -> Iterator[None]:
        with self._cond:
            self._cond.wait_for(lambda: not self._exclusive and self._waiting == 0)
            self._active += 1
        try:
            yield
        finally:
            with self._cond:
                self._active -= 1
                self._cond.notify_all()

    @contextlib.contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            self._waiting += 1
            try:
                self._cond.wait_for(lambda: not self._exclusive and self._active == 0)
            finally:
                self._waiting -= 1
            self._exclusive = True
        try:
            yield
        finally:
            with self._cond:
                self._exclusive = False
                self._cond.notify_all()


class CosmosContainer:
    """Narrow view of an ``azure.cosmos`` ``ContainerProxy``.

    Point operations return :class:`StoreResponse`; :meth:`query` yields one
    :class:`StoreBatch` per round trip. SDK exceptions are not caught here.

    Notes
    -----
    Containers opened from the same :class:`CosmosDatabase` share one
    :class:`_ChargeGate`, so paging and concurrent point operations on the
    same client each report their own charge.
    """

    def __init__(self, proxy, gate: Optional[_ChargeGate] = None) -> None:
        self._proxy = proxy
        self._gate = gate or _ChargeGate()

    @property
    def name(self) -> str:
        return self._proxy.id

    def read(self, item_id: str, partition_key: Any) -> StoreResponse:
        hook = _ChargeHook()
        with self._gate.shared():
            document = self._proxy.read_item(item=item_id, partition_key=partition_key, response_hook=hook)
        return StoreResponse(document, hook.charge)

    def insert(self, document: Document) -> StoreResponse:
        hook = _ChargeHook()
        with self._gate.shared():
            created = self._proxy.create_item(body=document, response_hook=hook)
        return StoreResponse(created, hook.charge)

    def replace(self, item_id: str, document: Document) -> StoreResponse:
        hook = _ChargeHook()
        with self._gate.shared():
            replaced = self._proxy.replace_item(item=item_id, body=document, response_hook=hook)
        return StoreResponse(replaced, hook.charge)

    def delete(self, item_id: str, partition_key: Any) -> StoreResponse:
        hook = _ChargeHook()
        with self._gate.shared():
            self._proxy.delete_item(item=item_id, partition_key=partition_key, response_hook=hook)
        return StoreResponse(None, hook.charge)

    def query(
        self,
        text: str,
        parameters: Sequence[SdkParameter] = (),
        page_size: Optional[int] = None,
        continuation: Optional[str] = None,
    ) -> Iterator[StoreBatch]:
        """Run a query and yield its result pages lazily.

        The charge of a page is the sum of the hook calls made while fetching
        it. SDK releases that only call the hook when the query is created
        leave that empty; the page charge then comes from the client's last
        response headers, read inside the exclusive gate.

        Parameters
        ----------
        text:
            Rendered query text.
        parameters:
            ``[{"name": "@x", "value": ...}]`` bindings.
        page_size:
            Max items per round trip; ``None`` lets the service decide.
        continuation:
            Token from a previous batch to resume after.
        """
        hook = _PageChargeHook()
        with self._gate.shared():
            iterable = self._proxy.query_items(
                query=text,
                parameters=list(parameters) or None,
                enable_cross_partition_query=True,
                max_item_count=page_size,
                response_hook=hook,
            )
        pager = iterable.by_page(continuation or None)
        pages = iter(pager)
        while True:
            with self._gate.exclusive():
                seen = len(hook.charges)
                page = next(pages, None)
                if page is None:
                    return
                items = list(page)
                fired = hook.charges[seen:]
                if fired:
                    charge = sum(fired)
                else:
                    charge = request_charge(self._proxy.client_connection.last_response_headers)
                token = pager.continuation_token or None
            yield StoreBatch(items, charge, token)

    def close(self) -> None:
        # Proxies hold no connection of their own; the client is owned by CosmosDatabase
        self._proxy = None


class CosmosDatabase:
    """Database handle able to provision containers.

    When built by :func:`universe.client.open_database` it also owns the
    ``CosmosClient`` and releases it on :meth:`close`.
    Containers it opens share one charge gate, as they share the client.
    """

    def __init__(self, proxy, client=None) -> None:
        self._proxy = proxy
        self._gate = _ChargeGate()
        self._resources = contextlib.ExitStack()
        if client is not None:
            self._resources.enter_context(client)

    @property
    def name(self) -> str:
        return self._proxy.id

    def create_container_if_absent(self, name: str, partition_key_path: str) -> CosmosContainer:
        proxy = self._proxy.create_container_if_not_exists(
            id=name,
            partition_key=PartitionKey(path=partition_key_path),
        )
        logger.info(
            "container_ready: database=%s container=%s partition_key=%s",
            self.name,
            name,
            partition_key_path,
        )
        return CosmosContainer(proxy, self._gate)

    def close(self) -> None:
        self._resources.close()

    def __enter__(self) -> "CosmosDatabase":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
