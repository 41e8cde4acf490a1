from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional

import pytest

from adapters.base import DatabaseAdapter, Document
from adapters.errors import AuthorizationError, EngineQueryError, NotFoundError, TransientUnavailableError


class MemoryAdapter(DatabaseAdapter):
    """Dict-backed adapter for exercising the layers above the drivers."""

    engine = "memory"

    def __init__(
        self,
        data: Optional[Dict[str, Dict[str, Document]]] = None,
        denied: Iterable[str] = (),
        unavailable: Iterable[str] = (),
        broken: Iterable[str] = (),
        listing_denied: bool = False,
        known_collections: Iterable[str] = (),
    ):
        super().__init__(SimpleNamespace(timeout_s=1.0, known_collections=list(known_collections)))
        self.data = {name: dict(rows) for name, rows in (data or {}).items()}
        self.denied = set(denied)
        self.unavailable = set(unavailable)
        self.broken = set(broken)
        self.listing_denied = listing_denied
        self.connect_calls = 0
        self.disconnect_calls = 0
        self._next_id = 1

    def _check(self, collection: str) -> Dict[str, Document]:
        if collection in self.denied:
            raise AuthorizationError()
        if collection in self.unavailable:
            raise TransientUnavailableError(details=collection)
        if collection in self.broken:
            raise EngineQueryError(details=collection)
        if collection not in self.data:
            raise NotFoundError()
        return self.data[collection]

    async def _connect(self) -> None:
        self.connect_calls += 1

    async def _disconnect(self) -> None:
        self.disconnect_calls += 1

    async def _list_collections(self) -> List[str]:
        if self.listing_denied:
            raise AuthorizationError()
        return sorted(self.data)

    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        rows = list(self._check(collection).values())
        return rows if limit is None else rows[:limit]

    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        rows = self.data.setdefault(collection, {})
        if id is None:
            while str(self._next_id) in rows:
                self._next_id += 1
            id = str(self._next_id)
        row = {**data, "id": str(id)}
        rows[str(id)] = row
        return row

    async def _read(self, collection: str, id: Any) -> Document:
        row = self._check(collection).get(str(id))
        if row is None:
            raise NotFoundError()
        return dict(row)

    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        row = self._check(collection).get(str(id))
        if row is None:
            raise NotFoundError()
        row.update({k: v for k, v in data.items() if k != "id"})
        return dict(row)

    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        rows = self._check(collection)
        if str(id) not in rows:
            raise NotFoundError()
        return rows.pop(str(id))


@pytest.fixture
def memory_adapter():
    return MemoryAdapter
