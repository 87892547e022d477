"""Full traversal of one author's creator page, shared by catalog discovery and the sampler."""

from __future__ import annotations

import logging
from typing import Any, Callable

from creative_sync.ingestion.epic_client import EpicClient
from creative_sync.models.credential import Credential

logger = logging.getLogger(__name__)

# Guards against a platform cursor that never advances.
MAX_PAGES_PER_AUTHOR = 200


def fetch_author_catalog(
    client: EpicClient,
    token: Callable[[], Credential],
    author_id: str,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """Every published artifact link of ``author_id``, newest first.

    ``token`` is called before each page so a long traversal picks up a
    refreshed credential.
    """
    links: list[dict[str, Any]] = []
    older_than = None
    for _ in range(MAX_PAGES_PER_AUTHOR):
        page = client.fetch_author_artifacts(author_id, token(), older_than=older_than, limit=limit)
        links.extend(page.links)
        cursor = page.next_cursor
        if cursor is None or cursor == older_than:
            break
        older_than = cursor
    else:
        logger.warning(
            "Creator page of %s still had more after %d pages; truncated.",
            author_id, MAX_PAGES_PER_AUTHOR,
        )
    return links
