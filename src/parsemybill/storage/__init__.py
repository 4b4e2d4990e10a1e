"""Document database, object store, and the persistence client over both."""

from .db import DocumentDatabase
from .objects import FileObjectStore
from .service import INVOICES_COLLECTION, PersistenceClient, build_persistence_client

__all__ = [
    "DocumentDatabase",
    "FileObjectStore",
    "INVOICES_COLLECTION",
    "PersistenceClient",
    "build_persistence_client",
]
