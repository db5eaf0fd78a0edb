"""
Search Index

Elasticsearch-backed full-text index of tenant documents.

Key Properties
--------------
- Every query carries a mandatory tenant filter
- Upserts are keyed by document id, so re-indexing is idempotent
- Deleting an absent record is indistinguishable from deleting a present one
- Client exceptions are translated to the service error taxonomy:
  unreachable / overloaded engine -> DependencyUnavailableError,
  engine rejecting a write        -> IndexingFailureError
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from elasticsearch import (
    ApiError,
    AsyncElasticsearch,
    BadRequestError,
    NotFoundError,
    TransportError,
)

from .models import IndexRecord, SearchHit, SearchHits
from ..core.errors import (
    DependencyUnavailableError,
    IndexingFailureError,
    ServiceError,
)

logger = logging.getLogger("docsearch.search.index")

DEPENDENCY_NAME = "elasticsearch"

SORT_RELEVANCE = "relevance"
SORT_RECENT = "recent"
SORT_MODES = (SORT_RELEVANCE, SORT_RECENT)

INDEX_MAPPINGS: Dict[str, Any] = {
    "properties": {
        "id": {"type": "keyword"},
        "tenantId": {"type": "keyword"},
        "title": {"type": "text"},
        "content": {"type": "text"},
        # Opaque passthrough: stored, never interpreted or mapped.
        "metadata": {"type": "object", "enabled": False},
        "createdAt": {"type": "keyword"},
        "updatedAt": {"type": "keyword"},
    }
}


# ---------------------------------------------------------------------
# Query Construction
# ---------------------------------------------------------------------

def build_query(tenant_id: str, text: str) -> Dict[str, Any]:
    """
    Build the query DSL for a tenant-scoped search.

    The tenant filter is unconditional. Non-empty text must match the title
    OR the content; empty text matches every record of the tenant.
    """
    query: Dict[str, Any] = {
        "bool": {
            "filter": [{"term": {"tenantId": tenant_id}}],
        }
    }

    if text:
        query["bool"]["must"] = [
            {
                "bool": {
                    "should": [
                        {"match": {"title": text}},
                        {"match": {"content": text}},
                    ],
                    "minimum_should_match": 1,
                }
            }
        ]
    else:
        query["bool"]["must"] = [{"match_all": {}}]

    return query


def build_sort(sort: str) -> Optional[List[Any]]:
    if sort == SORT_RECENT:
        return [{"createdAt": {"order": "desc"}}, "_score"]
    return None


# ---------------------------------------------------------------------
# Index Wrapper
# ---------------------------------------------------------------------

class SearchIndex:
    """
    Thin async wrapper over one Elasticsearch index.
    """

    def __init__(
        self,
        client: AsyncElasticsearch,
        index_name: str,
        refresh: str = "false",
    ) -> None:
        """
        Parameters
        ----------
        client : AsyncElasticsearch
            Shared client; timeouts are configured on it.
        index_name : str
            Name of the index holding IndexRecords.
        refresh : str
            Refresh policy applied to writes ("false", "true", "wait_for").
        """
        self._client = client
        self._index = index_name
        self._refresh = refresh

    @property
    def index_name(self) -> str:
        return self._index

    def _translate(self, exc: Exception, action: str) -> ServiceError:
        if isinstance(exc, ApiError):
            status = exc.meta.status
            if status == 429 or status >= 500:
                return DependencyUnavailableError(
                    DEPENDENCY_NAME, f"{action} failed with status {status}: {exc}"
                )
            return IndexingFailureError(f"{action} rejected with status {status}: {exc}")
        return DependencyUnavailableError(DEPENDENCY_NAME, f"{action} failed: {exc}")

    async def ensure_index(self) -> None:
        """
        Create the index with its mappings if it does not exist yet.
        """
        try:
            if await self._client.indices.exists(index=self._index):
                return
            await self._client.indices.create(index=self._index, mappings=INDEX_MAPPINGS)
            logger.info("Created search index '%s'", self._index)
        except BadRequestError as exc:
            if exc.error == "resource_already_exists_exception":
                return
            raise self._translate(exc, "ensure_index") from exc
        except (ApiError, TransportError) as exc:
            raise self._translate(exc, "ensure_index") from exc

    async def upsert(self, record: IndexRecord) -> None:
        """
        Create or overwrite the record for `record.id`.
        """
        try:
            await self._client.index(
                index=self._index,
                id=record.id,
                document=record.to_source(),
                refresh=self._refresh,
            )
        except (ApiError, TransportError) as exc:
            raise self._translate(exc, f"upsert {record.id}") from exc

    async def delete_by_id(self, document_id: str) -> bool:
        """
        Remove the record for `document_id`.

        Returns
        -------
        bool
            True if a record was removed, False if there was none.
        """
        try:
            await self._client.delete(
                index=self._index,
                id=document_id,
                refresh=self._refresh,
            )
        except NotFoundError:
            return False
        except (ApiError, TransportError) as exc:
            raise self._translate(exc, f"delete {document_id}") from exc
        return True

    async def query(
        self,
        tenant_id: str,
        text: str,
        offset: int,
        size: int,
        sort: str = SORT_RELEVANCE,
    ) -> SearchHits:
        """
        Execute a ranked, tenant-filtered query.

        Parameters
        ----------
        tenant_id : str
            Mandatory tenant filter.
        text : str
            Free text matched against title or content; may be empty.
        offset : int
            0-based offset of the first hit.
        size : int
            Maximum number of hits.
        sort : str
            "relevance" or "recent".

        Returns
        -------
        SearchHits
            Total hit count and the requested page of hits.
        """
        kwargs: Dict[str, Any] = {
            "index": self._index,
            "query": build_query(tenant_id, text),
            "from_": offset,
            "size": size,
            "track_total_hits": True,
        }
        sort_clause = build_sort(sort)
        if sort_clause is not None:
            kwargs["sort"] = sort_clause
            kwargs["track_scores"] = True

        try:
            response = await self._client.search(**kwargs)
        except NotFoundError:
            # Index not created yet: nothing has been indexed.
            return SearchHits(total=0, hits=[])
        except (ApiError, TransportError) as exc:
            raise DependencyUnavailableError(DEPENDENCY_NAME, f"query failed: {exc}") from exc

        body = response["hits"]
        total = body.get("total", {})
        total_value = total.get("value", 0) if isinstance(total, dict) else int(total or 0)

        hits = [
            SearchHit(
                record=IndexRecord.model_validate({**hit["_source"], "id": hit["_id"]}),
                score=hit.get("_score"),
            )
            for hit in body.get("hits", [])
        ]
        return SearchHits(total=total_value, hits=hits)

    async def ping(self) -> bool:
        return bool(await self._client.ping())
