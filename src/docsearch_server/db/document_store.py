"""
Document Store

PostgreSQL-backed system of record for documents.

Every method opens its own short-lived session from the injected session
factory, so the store can be shared by request handlers and the background
indexing worker alike. Driver-level connectivity failures are translated to
`DependencyUnavailableError` here, so callers never see SQLAlchemy or
asyncpg exceptions.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import Document
from ..core.errors import DependencyUnavailableError
from ..documents.lifecycle import DocumentStatus

DEPENDENCY_NAME = "postgresql"

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, OSError)


class DocumentStore:
    """
    Tenant-scoped persistence operations for Document rows.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Parameters
        ----------
        session_factory : async_sessionmaker[AsyncSession]
            Factory producing a fresh AsyncSession per operation.
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except _UNAVAILABLE_ERRORS as exc:
            raise DependencyUnavailableError(
                DEPENDENCY_NAME, f"{action} failed: {exc}"
            ) from exc

    async def insert(self, document: Document) -> Document:
        """
        Persist a new document and return it with timestamps populated.
        """
        async with self._session("insert") as session:
            session.add(document)
            await session.commit()
        return document

    async def find_by_id_and_tenant(
        self,
        document_id: uuid.UUID,
        tenant_id: str,
    ) -> Optional[Document]:
        async with self._session("find_by_id_and_tenant") as session:
            result = await session.execute(
                select(Document).where(
                    Document.id == document_id,
                    Document.tenant_id == tenant_id,
                )
            )
            return result.scalar_one_or_none()

    async def find_by_id(self, document_id: uuid.UUID) -> Optional[Document]:
        """
        Look a document up by id alone.

        Only for internally generated indexing tasks, which carry trusted ids.
        """
        async with self._session("find_by_id") as session:
            result = await session.execute(
                select(Document).where(Document.id == document_id)
            )
            return result.scalar_one_or_none()

    async def update_status(
        self,
        document_id: uuid.UUID,
        status: DocumentStatus,
        allowed_from: Iterable[DocumentStatus],
    ) -> bool:
        """
        Conditionally move a document to `status`.

        The row is only updated while its current status is one of
        `allowed_from`, so a concurrent transition is never overwritten by an
        illegal one.

        Returns
        -------
        bool
            True if a row was updated.
        """
        async with self._session("update_status") as session:
            result = await session.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.status.in_(list(allowed_from)),
                )
                .values(status=status, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_by_id_and_tenant(
        self,
        document_id: uuid.UUID,
        tenant_id: str,
    ) -> bool:
        """
        Mark a document DELETED and hard-delete it in one transaction.

        Both statements filter on the composite key, so there is no separate
        existence check racing the delete.

        Returns
        -------
        bool
            True if a row was removed.
        """
        async with self._session("delete_by_id_and_tenant") as session:
            await session.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.tenant_id == tenant_id,
                )
                .values(status=DocumentStatus.DELETED, updated_at=datetime.now(timezone.utc))
            )
            result = await session.execute(
                delete(Document).where(
                    Document.id == document_id,
                    Document.tenant_id == tenant_id,
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def find_stuck(
        self,
        status: DocumentStatus,
        older_than: datetime,
        limit: int = 100,
    ) -> List[Document]:
        """
        Return documents sitting in `status` since before `older_than`,
        oldest first.
        """
        async with self._session("find_stuck") as session:
            result = await session.execute(
                select(Document)
                .where(
                    Document.status == status,
                    Document.updated_at < older_than,
                )
                .order_by(Document.updated_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def ping(self) -> bool:
        async with self._session("ping") as session:
            await session.execute(text("SELECT 1"))
        return True
