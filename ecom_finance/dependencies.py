"""
FastAPI dependency injection.
Provides the data store, upload store, and API key validation.
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from ecom_finance.config import settings
from ecom_finance.storage.repository import DataStore
from ecom_finance.storage.upload_store import UploadStore


# ── Singleton instances ──────────────────────────────────────
_store: Optional[DataStore] = None
_upload_store: Optional[UploadStore] = None


def get_store() -> DataStore:
    """Get or create the PostgreSQL data store singleton."""
    global _store
    if _store is None:
        from ecom_finance.models.database import async_session_factory
        from ecom_finance.storage.sql_store import SqlDataStore
        _store = SqlDataStore(async_session_factory)
    return _store


def get_upload_store() -> UploadStore:
    """Get or create the upload store singleton."""
    global _upload_store
    if _upload_store is None:
        _upload_store = UploadStore()
    return _upload_store


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
