"""
Staging area for uploaded report files.
The API writes the upload here; the worker reads it back by relative path.
Local filesystem (volume mount); paths are relative to UPLOAD_ROOT.
"""

import hashlib
import re
from pathlib import Path
from typing import Optional

import structlog

from ecom_finance.config import settings
from ecom_finance.pipeline.errors import FileValidationError

logger = structlog.get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def content_hash(data: bytes) -> str:
    """SHA-256 hash of file content."""
    return hashlib.sha256(data).hexdigest()


def safe_filename(filename: str) -> str:
    name = Path(filename or "upload").name
    return _UNSAFE.sub("_", name).strip("._") or "upload"


def upload_path(empresa_id: str, job_id: str, filename: str) -> str:
    """Path for an uploaded report of an import job."""
    return f"{empresa_id}/{job_id}/{safe_filename(filename)}"


def allowed_extensions() -> set[str]:
    return {e.strip().lower() for e in settings.ALLOWED_EXTENSIONS.split(",") if e.strip()}


def validate_upload(filename: str, data: bytes) -> None:
    """Reject empty, oversized or unsupported files before anything is stored."""
    extension = Path(filename or "").suffix.lower()
    if extension not in allowed_extensions():
        raise FileValidationError(
            f"Formato não suportado: {extension or 'sem extensão'}. "
            f"Use {', '.join(sorted(allowed_extensions()))}"
        )
    if not data:
        raise FileValidationError("Arquivo vazio")
    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if len(data) > max_bytes:
        raise FileValidationError(f"Arquivo maior que {settings.MAX_UPLOAD_SIZE_MB} MB")


class UploadStore:
    """Save and load uploaded files under UPLOAD_ROOT."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.UPLOAD_ROOT)
        self.root.mkdir(parents=True, exist_ok=True)

    def _full_path(self, relative_path: str) -> Path:
        full_path = (self.root / relative_path).resolve()
        if self.root.resolve() not in full_path.parents:
            raise ValueError(f"Path escapes upload root: {relative_path}")
        return full_path

    def save(self, relative_path: str, data: bytes) -> str:
        """Save raw bytes. Returns the relative path."""
        full_path = self._full_path(relative_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(data)
        logger.info("upload_saved", path=relative_path, size_bytes=len(data), sha256=content_hash(data)[:12])
        return relative_path

    def load(self, relative_path: str) -> bytes:
        full_path = self._full_path(relative_path)
        if not full_path.exists():
            raise FileNotFoundError(f"Upload not found: {relative_path}")
        return full_path.read_bytes()

    def exists(self, relative_path: str) -> bool:
        return self._full_path(relative_path).exists()

    def delete(self, relative_path: str) -> bool:
        """Delete an upload. Returns True if it existed."""
        full_path = self._full_path(relative_path)
        if full_path.exists():
            full_path.unlink()
            logger.info("upload_deleted", path=relative_path)
            return True
        return False
