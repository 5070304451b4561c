"""
Content hashing and storage-key derivation.

Two concerns are kept apart on purpose:

- "same content": content_fingerprint() and page_content_hash() are pure
  functions of what was compiled, used for cache lookup.
- "same artifact": compiled_book_key() mixes in a per-compile uniqueness
  token, so two compiles of identical content never share a storage address.
"""

from __future__ import annotations

import hashlib
import json
import secrets
import time
from typing import Iterable, Protocol

from .utils import sanitize_label

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class VersionedPage(Protocol):
    page_id: str
    updated_marker: str


def _sha256(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _encode(value) -> str:
    # JSON keeps field boundaries unambiguous whatever characters ids contain
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def page_content_hash(collection_id: str, page_id: str, updated_marker: str) -> str:
    """
    Hash of one page version; changes whenever the page is edited.

    Covers the raw collection id, so collections whose ids sanitize to the
    same key path segment still get distinct page keys.
    """
    return _sha256(_encode([collection_id, page_id, updated_marker]))[:16]


def _segment(value: str) -> str:
    return sanitize_label(value, "unnamed")


def page_artifact_key(collection_id: str, trim_size: str, page_id: str, updated_marker: str) -> str:
    page_hash = page_content_hash(collection_id, page_id, updated_marker)
    return f"{_segment(collection_id)}/pages/{trim_size}/{_segment(page_id)}-{page_hash}-300dpi.pdf"


def content_fingerprint(collection_id: str, pages: Iterable[VersionedPage], trim_size: str) -> str:
    """
    Fingerprint of a compile's inputs, used to find a reusable complete job.

    Covers the collection, the trim size and every page id with its
    last-modified marker, in order. Reordering pages changes the fingerprint.
    """
    payload = {
        "collection": collection_id,
        "trim": trim_size,
        "pages": [[page.page_id, page.updated_marker] for page in pages],
    }
    return _sha256(_encode(payload))[:16]


def new_uniqueness_token() -> str:
    """Millisecond timestamp in base36 plus random suffix."""
    return f"{_base36(int(time.time() * 1000))}{secrets.token_hex(3)}"


def compiled_book_prefix(collection_id: str) -> str:
    return f"{_segment(collection_id)}/compiled/"


def compiled_book_key(collection_id: str, fingerprint: str, trim_size: str, token: str) -> str:
    return f"{compiled_book_prefix(collection_id)}{fingerprint}-{trim_size}-{token}.pdf"


def cover_key(collection_id: str, fingerprint: str, trim_size: str, token: str) -> str:
    return f"{_segment(collection_id)}/covers/{fingerprint}-{trim_size}-{token}.pdf"
