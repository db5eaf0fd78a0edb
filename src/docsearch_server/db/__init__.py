"""
Database Package

Provides SQLAlchemy async session management, the document model, and the
document store for PostgreSQL.
"""

from .session import async_engine, AsyncSessionLocal, create_schema
from .models import Base, Document
from .document_store import DocumentStore

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "create_schema",
    "Base",
    "Document",
    "DocumentStore",
]
