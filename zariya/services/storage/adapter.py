import hashlib
import hmac
import time
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from urllib.parse import urlencode

LOCAL_CONTENT_PATH = "/api/v1/documents/content"


class StorageAdapter(ABC):
    """Where KYC scans and receipts live; callers only ever see object keys."""

    provider: str

    @abstractmethod
    def write_file(self, object_key: str, content: bytes) -> None: ...

    @abstractmethod
    def generate_download_url(self, object_key: str, expires_in: int = 3600) -> str: ...

    @abstractmethod
    def delete_object(self, object_key: str) -> None: ...

    @abstractmethod
    def object_exists(self, object_key: str) -> bool: ...


class LocalFileSystemAdapter(StorageAdapter):
    """Documents under a local directory, served back through signed, expiring URLs."""

    provider = "local"

    def __init__(self, base_path: str, base_url: str, *, signing_key: str = ""):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/")
        self.signing_key = signing_key.encode("utf-8")
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _signature(self, object_key: str, expires: int) -> str:
        return hmac.new(self.signing_key, f"{object_key}:{expires}".encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, object_key: str, expires: int, signature: str, *, now: float | None = None) -> bool:
        """False once ``expires`` has passed or when the signature was not made with our key."""
        if (time.time() if now is None else now) > expires:
            return False
        return hmac.compare_digest(self._signature(object_key, expires), signature)

    def resolve_path(self, object_key: str) -> Path:
        """Map a key to a file strictly inside ``base_path``; anything else is a ValueError."""
        key = PurePosixPath(object_key)
        if "\\" in object_key or key.is_absolute() or ".." in key.parts:
            raise ValueError("Invalid object key")
        base = self.base_path.resolve()
        resolved = base.joinpath(*key.parts).resolve()
        if base not in resolved.parents:
            raise ValueError("Invalid object key")
        return resolved

    def generate_download_url(self, object_key: str, expires_in: int = 3600) -> str:
        expires = int(time.time()) + expires_in
        query = urlencode({"key": object_key, "expires": expires, "signature": self._signature(object_key, expires)})
        return f"{self.base_url}{LOCAL_CONTENT_PATH}?{query}"

    def write_file(self, object_key: str, content: bytes) -> None:
        path = self.resolve_path(object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def delete_object(self, object_key: str) -> None:
        self.resolve_path(object_key).unlink(missing_ok=True)

    def object_exists(self, object_key: str) -> bool:
        try:
            return self.resolve_path(object_key).is_file()
        except ValueError:
            return False
