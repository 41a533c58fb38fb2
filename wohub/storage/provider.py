from typing import Optional


class StorageProvider:
    name = "abstract"

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> str:
        """Store data under key and return the canonical key."""
        raise NotImplementedError

    def read_bytes(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        """Time-limited direct link, or None when the provider has none."""
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
