from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, List

from adapters.identifiers import is_valid_identifier

LOG = logging.getLogger(__name__)

# Names tried when a document store will not enumerate its collections.
DEFAULT_CANDIDATE_COLLECTIONS = (
    "users",
    "products",
    "orders",
    "categories",
    "posts",
    "comments",
    "mail",
    "licenses",
    "payments",
    "public",
    "classes",
    "recordings",
    "transcripts",
    "studyPlans",
    "notes",
    "lectures",
)


def merge_candidates(*groups: Iterable[str]) -> List[str]:
    merged: List[str] = []
    for group in groups:
        for name in group or ():
            if not is_valid_identifier(name):
                LOG.info("ignoring candidate collection with unsupported name", extra={"collection": name})
                continue
            if name not in merged:
                merged.append(name)
    return merged


async def probe_collections(
    sample: Callable[[str], Awaitable[List[Any]]],
    names: Iterable[str],
) -> List[str]:
    """Return the candidate names whose one-row sample comes back non-empty."""
    found: List[str] = []
    for name in names:
        try:
            rows = await sample(name)
        except Exception as exc:
            LOG.debug("probe of %s skipped: %s", name, type(exc).__name__)
            continue
        if rows:
            found.append(name)
    return found
