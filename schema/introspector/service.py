from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional

from adapters.base import DatabaseAdapter
from adapters.config import Connection
from adapters.errors import (
    AuthorizationError,
    EngineQueryError,
    NotFoundError,
    TransientUnavailableError,
)
from adapters.identifiers import validate_identifier
from adapters.probing import DEFAULT_CANDIDATE_COLLECTIONS, merge_candidates
from schema.introspector.inference import infer_fields
from schema.introspector.models import Collection, Field, IntrospectionResult
from utils.settings import Settings, get_settings

if TYPE_CHECKING:
    from connections.registry import ConnectionRegistry

LOG = logging.getLogger(__name__)

MAX_SAMPLE_SIZE = 5


def _id_only_schema() -> List[Field]:
    return [Field(name="id", type="string", nullable=False, primary_key=True)]


async def introspect(
    adapter: DatabaseAdapter,
    extra_collections: Optional[Iterable[str]] = None,
    sample_size: int = MAX_SAMPLE_SIZE,
    count_rows: bool = True,
) -> IntrospectionResult:
    """Discover collections and their fields.

    Catalog engines answer from their metadata tables. Other engines are
    enumerated natively where allowed, extended with ``extra_collections``
    and, when enumeration is restricted, the default candidate names; each
    candidate is then sampled. Per-collection permission, availability and
    query failures are recorded instead of aborting the scan.
    """
    extras = [validate_identifier(name, "collection") for name in extra_collections or ()]
    sample_size = max(1, min(MAX_SAMPLE_SIZE, int(sample_size)))

    if adapter.supports_catalog:
        return IntrospectionResult(collections=await adapter.describe_collections())

    native: List[str] = []
    restricted = False
    try:
        native = await adapter.list_collections()
        restricted = adapter.probed
    except AuthorizationError:
        LOG.info("collection listing denied; probing candidates", extra={"engine": adapter.engine})
        restricted = True

    enumerated = set() if restricted else set(native)
    fallback: List[str] = []
    if restricted:
        fallback = merge_candidates(DEFAULT_CANDIDATE_COLLECTIONS, getattr(adapter.config, "known_collections", ()))
    candidates = merge_candidates(native, extras, fallback)

    result = IntrospectionResult()
    for name in candidates:
        source = "native" if name in enumerated else "probe"
        try:
            samples = await adapter.list_documents(name, sample_size)
        except AuthorizationError:
            result.denied.append(name)
            result.collections.append(
                Collection(name=name, fields=_id_only_schema(), meta={"permissionDenied": True, "source": source})
            )
            continue
        except NotFoundError:
            continue
        except (TransientUnavailableError, EngineQueryError) as exc:
            LOG.warning("sampling %s failed: %s", name, exc.message, extra={"engine": adapter.engine})
            result.failed[name] = exc.message
            continue

        if not samples:
            if name in enumerated:
                result.collections.append(Collection(name=name, fields=_id_only_schema(), meta={"source": source}))
            continue

        row_count = len(samples)
        if count_rows:
            try:
                row_count = await adapter.count(name)
            except (AuthorizationError, NotFoundError, TransientUnavailableError, EngineQueryError) as exc:
                LOG.info("row count for %s unavailable: %s", name, exc.message)
        result.collections.append(
            Collection(name=name, row_count=row_count, fields=infer_fields(samples), meta={"source": source})
        )
    return result


async def introspect_connection(
    registry: "ConnectionRegistry",
    connection: Connection,
    extra_collections: Optional[Iterable[str]] = None,
    settings: Optional[Settings] = None,
) -> IntrospectionResult:
    settings = settings or get_settings()
    extras = [validate_identifier(name, "collection") for name in extra_collections or ()]
    adapter = await registry.connect_to_database(connection)
    return await introspect(
        adapter,
        extra_collections=merge_candidates(extras, settings.extra_known_collections),
        sample_size=settings.introspection_sample_size,
        count_rows=settings.introspection_count_rows,
    )
