from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from uuid import uuid4

from fastapi import UploadFile

from zariya.core.settings import settings
from zariya.services.storage.adapter import LocalFileSystemAdapter

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".pdf", ".png", ".jpg", ".jpeg", ".webp"}

# Magic byte signatures for accepted document types.
_MAGIC_SIGNATURES: dict[str, list[bytes]] = {
    ".pdf": [b"%PDF"],
    ".png": [b"\x89PNG\r\n\x1a\n"],
    ".jpg": [b"\xff\xd8\xff"],
    ".jpeg": [b"\xff\xd8\xff"],
    ".webp": [b"RIFF"],
}

_CHUNK_SIZE = 1024 * 1024


class DocumentRejected(ValueError):
    pass


@lru_cache(maxsize=1)
def get_storage() -> LocalFileSystemAdapter:
    return LocalFileSystemAdapter(
        base_path=settings.local_upload_dir,
        base_url=settings.public_base_url,
        signing_key=settings.secret_key,
    )


def _validate_content_type(header_bytes: bytes, ext: str) -> None:
    signatures = _MAGIC_SIGNATURES.get(ext, [])
    if not any(header_bytes.startswith(sig) for sig in signatures):
        raise DocumentRejected(f"File content does not match the expected format for '{ext}'")


def _extension(filename: str | None) -> str:
    name = Path(filename or "").name
    ext = Path(name).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise DocumentRejected(
            f"File type not allowed. Allowed extensions: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    return ext


def _segment(value: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in str(value))
    if not cleaned:
        raise DocumentRejected("Invalid document owner or slot")
    return cleaned


async def store_document(upload: UploadFile, *, owner: str, slot: str) -> str:
    """Persist an uploaded document and return its opaque storage reference.

    The bytes are only checked against the magic signature of their claimed
    extension and the size limit; their meaning is never inspected.
    """
    ext = _extension(upload.filename)
    object_key = f"documents/{_segment(owner)}/{_segment(slot)}/{uuid4().hex}{ext}"
    chunks: list[bytes] = []
    size = 0
    try:
        while True:
            chunk = await upload.read(_CHUNK_SIZE)
            if not chunk:
                break
            if not chunks:
                _validate_content_type(chunk, ext)
            size += len(chunk)
            if size > settings.max_document_bytes:
                raise DocumentRejected(
                    f"File exceeds maximum allowed size of {settings.max_document_bytes // (1024 * 1024)} MB"
                )
            chunks.append(chunk)
    finally:
        await upload.close()
    if not chunks:
        raise DocumentRejected("Uploaded file is empty")

    get_storage().write_file(object_key, b"".join(chunks))
    logger.info("Document stored", extra={"object_key": object_key, "size_bytes": size, "slot": slot})
    return object_key


def resolve_document(reference: str | None) -> str | None:
    """Signed download URL for ``reference``, or None when nothing is stored there."""
    if not reference:
        return None
    storage = get_storage()
    if not storage.object_exists(reference):
        return None
    return storage.generate_download_url(reference, expires_in=settings.document_url_expiry_seconds)


def discard_document(reference: str | None) -> None:
    """Remove a document that is no longer referenced; failures are only logged."""
    if not reference:
        return
    try:
        get_storage().delete_object(reference)
    except (OSError, ValueError):
        logger.warning("Could not remove document", extra={"object_key": reference}, exc_info=True)


def open_signed_document(object_key: str, expires: int, signature: str) -> Path:
    storage = get_storage()
    if not storage.verify(object_key, expires, signature):
        raise PermissionError("Invalid or expired URL signature")
    path = storage.resolve_path(object_key)
    if not path.exists():
        raise FileNotFoundError(object_key)
    return path
