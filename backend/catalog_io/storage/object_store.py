"""Bucketed object storage on the local filesystem with signed download links."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote, urlencode

from catalog_io.core.config import get_settings
from catalog_io.core.errors import SignatureError, StorageError

logger = logging.getLogger(__name__)

BUCKETS = ("imports", "exports")


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_at: datetime


class ObjectStore:
    """Stores objects under ``<root>/<bucket>/<path>``."""

    def __init__(self, root: str | Path, secret_key: str, public_base_url: str):
        self.root = Path(root).resolve()
        self.secret_key = secret_key
        self.public_base_url = public_base_url.rstrip("/")
        for bucket in BUCKETS:
            (self.root / bucket).mkdir(parents=True, exist_ok=True)

    def _resolve(self, bucket: str, path: str) -> Path:
        if bucket not in BUCKETS:
            raise StorageError(f"Unknown bucket: {bucket}")
        bucket_root = (self.root / bucket).resolve()
        target = (bucket_root / path).resolve()
        if not target.is_relative_to(bucket_root) or target == bucket_root:
            raise StorageError(f"Invalid object path: {path}")
        return target

    def upload(self, bucket: str, path: str, data: bytes) -> int:
        target = self._resolve(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            logger.error(f"Failed to write {bucket}/{path}: {exc}", exc_info=True)
            raise StorageError(f"Failed to store {path}") from exc
        logger.info(f"Stored {bucket}/{path} ({len(data)} bytes)")
        return len(data)

    def download(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"Object not found: {path}") from exc
        except OSError as exc:
            logger.error(f"Failed to read {bucket}/{path}: {exc}", exc_info=True)
            raise StorageError(f"Failed to read {path}") from exc

    def remove(self, bucket: str, path: str) -> None:
        """Cleanup; a missing object is not an error."""
        target = self._resolve(bucket, path)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(f"Failed to remove {bucket}/{path}: {exc}")

    def local_path(self, bucket: str, path: str) -> Path:
        target = self._resolve(bucket, path)
        if not target.is_file():
            raise StorageError(f"Object not found: {path}")
        return target

    def _sign(self, bucket: str, path: str, expires: int) -> str:
        message = f"{bucket}/{path}:{expires}"
        return hmac.new(
            self.secret_key.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> SignedUrl:
        self._resolve(bucket, path)
        expires = int(time.time()) + expires_in
        query = urlencode({"expires": expires, "signature": self._sign(bucket, path, expires)})
        url = f"{self.public_base_url}/storage/{bucket}/{quote(path)}?{query}"
        return SignedUrl(url=url, expires_at=datetime.fromtimestamp(expires, tz=timezone.utc))

    def verify_signature(
        self, bucket: str, path: str, expires: int, signature: str, now: float | None = None
    ) -> None:
        """Raise SignatureError unless the link is authentic and unexpired."""
        expected = self._sign(bucket, path, expires)
        if not hmac.compare_digest(expected, signature or ""):
            raise SignatureError("Invalid signature")
        if (now if now is not None else time.time()) > expires:
            raise SignatureError("Link has expired")


def get_object_store() -> ObjectStore:
    settings = get_settings()
    return ObjectStore(settings.storage_root, settings.secret_key, settings.public_base_url)
