"""
Local filesystem storage provider for development and tests.
"""
from typing import Optional
from pathlib import Path

import structlog

from ..config import settings
from .provider import StorageProvider


logger = structlog.get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    """Stores objects under <base_dir>/uploads/<key>."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_storage_dir)
        (self.base_dir / "uploads").mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / "uploads" / clean_key

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> str:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return key.lstrip("/")

    def read_bytes(self, key: str) -> Optional[bytes]:
        path = self._get_path(key)
        if not path.exists():
            return None
        with open(path, "rb") as f:
            return f.read()

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        # No direct link; local objects are streamed by the attachments API
        return None

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning("local_storage_delete_failed", key=key, error=str(e))
