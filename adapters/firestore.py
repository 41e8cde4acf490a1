from __future__ import annotations

import inspect
from datetime import datetime
from typing import Any, Callable, List, Optional

from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from google.oauth2 import service_account

from adapters.base import DatabaseAdapter, Document
from adapters.errors import AdapterError, AuthenticationError, ConfigurationError, EmptyPayloadError, NotFoundError
from adapters.probing import DEFAULT_CANDIDATE_COLLECTIONS, merge_candidates, probe_collections


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    # DocumentReference
    if hasattr(value, "path") and hasattr(value, "id") and hasattr(value, "parent"):
        return value.path
    # GeoPoint
    if hasattr(value, "latitude") and hasattr(value, "longitude"):
        return {"latitude": value.latitude, "longitude": value.longitude}
    return value


def to_document(snapshot: Any) -> Document:
    return {"id": snapshot.id, **_plain(snapshot.to_dict() or {})}


class FirestoreAdapter(DatabaseAdapter):
    engine = "firestore"

    def __init__(self, config: Any, retry_after: int = 2, client_factory: Optional[Callable[..., Any]] = None):
        super().__init__(config, retry_after=retry_after)
        self._client_factory = client_factory or firestore.AsyncClient
        self._client = None

    async def _connect(self) -> None:
        cfg = self.config
        credentials = None
        if cfg.service_account_key:
            try:
                credentials = service_account.Credentials.from_service_account_info(cfg.service_account_key)
            except ValueError as exc:
                raise ConfigurationError("Invalid service account key") from exc
        self._client = self._client_factory(project=cfg.project_id, credentials=credentials)

    async def _disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            result = client.close()
            if inspect.isawaitable(result):
                await result

    def _collection(self, name: str):
        if self._client is None:
            raise RuntimeError("firestore adapter is not connected")
        return self._client.collection(name)

    async def _list_collections(self) -> List[str]:
        try:
            names = [ref.id async for ref in self._client.collections()]
            self.probed = False
        except google_exceptions.PermissionDenied:
            self.probed = True
            candidates = merge_candidates(DEFAULT_CANDIDATE_COLLECTIONS, self.config.known_collections)
            names = await probe_collections(lambda name: self._list_documents(name, 1), candidates)
        return merge_candidates(names)

    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        query = self._collection(collection)
        if limit is not None:
            query = query.limit(limit)
        return [to_document(snapshot) async for snapshot in query.stream()]

    async def _count(self, collection: str) -> int:
        results = await self._collection(collection).count(alias="total").get()
        for result in results:
            for aggregation in result:
                return int(aggregation.value)
        return 0

    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        payload = {k: v for k, v in data.items() if k != "id"}
        coll = self._collection(collection)
        ref = coll.document(str(id)) if id is not None else coll.document()
        await ref.set(payload)
        return {"id": ref.id, **payload}

    async def _read(self, collection: str, id: Any) -> Document:
        snapshot = await self._collection(collection).document(str(id)).get()
        if not snapshot.exists:
            raise NotFoundError()
        return to_document(snapshot)

    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        changes = {k: v for k, v in data.items() if k != "id"}
        if not changes:
            raise EmptyPayloadError()
        ref = self._collection(collection).document(str(id))
        await ref.update(changes)
        return to_document(await ref.get())

    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        ref = self._collection(collection).document(str(id))
        snapshot = await ref.get()
        if not snapshot.exists:
            raise NotFoundError()
        await ref.delete()
        return to_document(snapshot)

    def classify_error(self, exc: BaseException) -> AdapterError:
        if isinstance(exc, (auth_exceptions.RefreshError, auth_exceptions.DefaultCredentialsError)):
            return AuthenticationError(details=self.redact(str(exc)))
        if isinstance(exc, google_exceptions.RetryError):
            return self.transient(exc)
        status = getattr(exc, "code", None) if isinstance(exc, google_exceptions.GoogleAPICallError) else None
        return self.classify_http_status(status, exc)
