"""
Artifact store for rendered pages, compiled books and covers.

Immutability contract:
    - A compiled book (or cover) is never overwritten. Recompilation writes a
      new artifact at a new key; keys are never reused.
    - Page artifacts are content-addressed: an edited page gets a new key, so
      a cached page can never be stale.
    - Print orders and reprints reference compiled books by key only.

Signed URLs are issued independently of job state, with a short lifetime for
caller downloads and a long one for the print partner's fulfillment queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .errors import ImmutabilityViolation
from .fingerprint import compiled_book_prefix
from .storage import ObjectStorage, StoredObject
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class StoredArtifact:
    key: str
    size_bytes: int
    uploaded_at: datetime
    created: bool = True


@dataclass
class SignedUrl:
    url: str
    expires_at: datetime
    expires_in: int
    purpose: str = "download"


class ArtifactStore:
    def __init__(
        self,
        storage: ObjectStorage,
        download_ttl_seconds: int = 3600,
        fulfillment_ttl_seconds: int = 86400,
    ) -> None:
        self.storage = storage
        self.download_ttl_seconds = download_ttl_seconds
        self.fulfillment_ttl_seconds = fulfillment_ttl_seconds

    def exists(self, key: str) -> bool:
        return self.storage.exists(key)

    def get(self, key: str) -> bytes:
        return self.storage.get(key)

    def put_page_artifact(self, key: str, data: bytes, metadata: Optional[Dict[str, str]] = None) -> StoredArtifact:
        """
        Store a rendered page under its content address.

        A page artifact that is already present was rendered from the same
        page version, so losing the write race is not an error.
        """
        meta = {"artifact-type": "page-pdf", "rendered-at": utcnow().isoformat(), **(metadata or {})}
        created = self.storage.put_if_absent(key, data, meta)
        if not created:
            logger.info(f"Page artifact {key} was stored concurrently; keeping existing copy")
        return StoredArtifact(key=key, size_bytes=len(data), uploaded_at=utcnow(), created=created)

    def put_compiled_book(self, key: str, data: bytes, metadata: Optional[Dict[str, str]] = None) -> StoredArtifact:
        """
        Store a compiled book at a write-once address.

        Raises:
            ImmutabilityViolation: If anything already exists at key. The
                existing bytes are left untouched.
        """
        return self._put_write_once(key, data, "compiled-book", metadata)

    def put_cover(self, key: str, data: bytes, metadata: Optional[Dict[str, str]] = None) -> StoredArtifact:
        return self._put_write_once(key, data, "cover", metadata)

    def _put_write_once(
        self,
        key: str,
        data: bytes,
        artifact_type: str,
        metadata: Optional[Dict[str, str]],
    ) -> StoredArtifact:
        meta = {"artifact-type": artifact_type, "compiled-at": utcnow().isoformat(), **(metadata or {})}
        if not self.storage.put_if_absent(key, data, meta):
            logger.error(f"IMMUTABILITY VIOLATION: refused to overwrite {artifact_type} at {key}")
            raise ImmutabilityViolation(key)
        return StoredArtifact(key=key, size_bytes=len(data), uploaded_at=utcnow())

    def signed_url(self, key: str, ttl_seconds: int, purpose: str = "download") -> SignedUrl:
        url = self.storage.signed_url(key, ttl_seconds)
        logger.info(f"Generated signed URL for {key} (expires in {ttl_seconds}s, purpose={purpose})")
        return SignedUrl(
            url=url,
            expires_at=utcnow() + timedelta(seconds=ttl_seconds),
            expires_in=ttl_seconds,
            purpose=purpose,
        )

    def download_url(self, key: str) -> SignedUrl:
        return self.signed_url(key, self.download_ttl_seconds, purpose="download")

    def fulfillment_url(self, key: str) -> SignedUrl:
        """Long-lived URL that survives the print partner's queue."""
        return self.signed_url(key, self.fulfillment_ttl_seconds, purpose="fulfillment")

    def list_compiled_books(self, collection_id: str) -> List[StoredObject]:
        return self.storage.list(compiled_book_prefix(collection_id))
