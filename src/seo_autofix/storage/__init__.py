from .content_store import ResourceError, SQLiteContentStore
from .sqlite_store import SQLiteStore

__all__ = ["ResourceError", "SQLiteContentStore", "SQLiteStore"]
