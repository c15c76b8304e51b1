from __future__ import annotations

import logging
import os
import secrets
import string
import threading

from burnlink.config import BLOB_DIR, INLINE_THRESHOLD_BYTES
from burnlink.core.exceptions import StorageError
from burnlink.models import BlobPayload, FileRecord, InlinePayload, PayloadLocation

logger = logging.getLogger("burnlink.storage")

_SLUG_ALPHABET = string.ascii_letters + string.digits
_BLOB_ID_LENGTH = 24
_MAX_SLUG_ATTEMPTS = 5

_blob_store = None
_blob_store_lock = threading.Lock()


def _generate_blob_id(length: int = _BLOB_ID_LENGTH) -> str:
    return "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(length))


class BlobStore:
    """Byte store for large payloads: one file per blob id under a root directory."""

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _path(self, blob_id: str) -> str:
        if not blob_id or any(ch not in _SLUG_ALPHABET for ch in blob_id):
            raise StorageError()
        return os.path.join(self.root, blob_id)

    def put(self, data: bytes) -> str:
        for _ in range(_MAX_SLUG_ATTEMPTS):
            blob_id = _generate_blob_id()
            try:
                with open(self._path(blob_id), "xb") as f:
                    f.write(data)
            except FileExistsError:
                continue
            except OSError as exc:
                logger.error("event=blob_write_failure blob_id=%s error=%s", blob_id, exc)
                raise StorageError() from exc
            return blob_id
        raise StorageError("Unable to allocate a unique blob id")

    def get(self, blob_id: str) -> bytes:
        try:
            with open(self._path(blob_id), "rb") as f:
                return f.read()
        except OSError as exc:
            logger.error("event=blob_read_failure blob_id=%s error=%s", blob_id, exc)
            raise StorageError("Failed to retrieve file") from exc

    def delete(self, blob_id: str) -> bool:
        """Remove a blob. Returns False when it was already gone."""
        try:
            os.remove(self._path(blob_id))
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("event=blob_delete_failure blob_id=%s error=%s", blob_id, exc)
            raise StorageError() from exc
        return True


def get_blob_store() -> BlobStore:
    """Lazily create the process-wide blob store."""
    global _blob_store
    if _blob_store is None:
        with _blob_store_lock:
            if _blob_store is None:
                _blob_store = BlobStore(BLOB_DIR)
    return _blob_store


class StorageSelector:
    """Decides where a payload lives and hides the difference from callers.

    Payloads up to ``threshold`` bytes are embedded in the record itself;
    anything larger is written to the blob store and the record only keeps
    the blob id. The choice is made once, at creation, from the decoded size.
    """

    def __init__(self, blob_store: BlobStore | None = None, threshold: int = INLINE_THRESHOLD_BYTES) -> None:
        self._blob_store = blob_store
        self.threshold = threshold

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = get_blob_store()
        return self._blob_store

    def store(self, payload: bytes) -> PayloadLocation:
        if len(payload) <= self.threshold:
            return InlinePayload(payload)
        blob_id = self.blob_store.put(payload)
        logger.info("event=blob_stored blob_id=%s size_bytes=%s", blob_id, len(payload))
        return BlobPayload(blob_id)

    def fetch(self, record: FileRecord) -> bytes:
        location = record.payload_location
        if isinstance(location, InlinePayload):
            return location.data
        return self.blob_store.get(location.blob_id)

    def purge(self, record: FileRecord) -> bool:
        """Release the bytes of a record outside its metadata row.

        Returns True when a blob object was actually deleted. Inline payloads
        disappear with the row, so there is nothing to do for them.
        """
        if record.blob_id is None:
            return False
        return self.blob_store.delete(record.blob_id)
