from ..config import settings
from .blob_provider import BlobStorageProvider
from .local_provider import LocalStorageProvider
from .provider import StorageProvider


def get_storage() -> StorageProvider:
    """
    Storage provider based on configuration.
    Azure Blob when STORAGE_PROVIDER=blob and credentials are set, otherwise local filesystem.
    """
    if settings.storage_provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        return BlobStorageProvider()
    return LocalStorageProvider()


def get_storage_for_provider(provider: str) -> StorageProvider:
    """Provider that holds an existing object, falling back to local storage."""
    if provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        return BlobStorageProvider()
    return LocalStorageProvider()
