"""
Object storage for submission files.

Keys look like ``org_{org_id}/submissions/{submission_id}/{uuid}_{name}``.
"""
import os
import re
import uuid
from typing import Optional, Protocol

from confapp.core import config


class StorageProvider(Protocol):
    async def put_object(self, org_id: str, submission_id: str, original_name: str, data: bytes) -> str:
        """Store bytes and return the storage key."""
        ...

    async def get_object(self, storage_key: str) -> bytes:
        ...


def build_storage_key(org_id: str, submission_id: str, original_name: str) -> str:
    safe_name = re.sub(r"[^\w.\-]", "_", os.path.basename(original_name)) or "file"
    return f"org_{org_id}/submissions/{submission_id}/{uuid.uuid4()}_{safe_name}"


class LocalStorageProvider:
    """Files under a local root directory (``STORAGE_ROOT``)."""

    def __init__(self, root: Optional[str] = None):
        self.root = root or config.STORAGE_ROOT

    def _path(self, storage_key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, storage_key))
        if not path.startswith(os.path.abspath(self.root) + os.sep):
            raise ValueError(f"Storage key escapes storage root: {storage_key}")
        return path

    async def put_object(self, org_id: str, submission_id: str, original_name: str, data: bytes) -> str:
        storage_key = build_storage_key(org_id, submission_id, original_name)
        path = self._path(storage_key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return storage_key

    async def get_object(self, storage_key: str) -> bytes:
        path = self._path(storage_key)
        if not os.path.exists(path):
            raise FileNotFoundError(f"Object not found: {storage_key}")
        with open(path, "rb") as f:
            return f.read()


class InMemoryStorageProvider:
    """Process-local storage, used by tests and demos."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}

    async def put_object(self, org_id: str, submission_id: str, original_name: str, data: bytes) -> str:
        storage_key = build_storage_key(org_id, submission_id, original_name)
        self.objects[storage_key] = bytes(data)
        return storage_key

    async def get_object(self, storage_key: str) -> bytes:
        try:
            return self.objects[storage_key]
        except KeyError:
            raise FileNotFoundError(f"Object not found: {storage_key}")


_storage: Optional[StorageProvider] = None


def get_storage() -> StorageProvider:
    """Process-wide storage provider; FastAPI dependency."""
    global _storage
    if _storage is None:
        _storage = LocalStorageProvider()
    return _storage


def set_storage(provider: StorageProvider) -> None:
    global _storage
    _storage = provider
