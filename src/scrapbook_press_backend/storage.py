"""
Object storage backends for page and book artifacts.

This module provides two interchangeable backends behind one small interface:
- S3ObjectStorage: any S3-compatible bucket (AWS S3, Cloudflare R2 via endpoint_url)
- LocalObjectStorage: a directory tree, for development and tests

Both offer an atomic write-if-absent primitive so that concurrent writers
can never replace an object that already exists. Signed URLs are time-boxed
and read-only; issuing one never changes stored state.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote, urlencode

import boto3
from botocore.exceptions import ClientError

from .utils import ensure_directory

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_ALREADY_EXISTS_CODES = {"412", "PreconditionFailed", "409", "ConditionalRequestConflict"}


@dataclass
class StoredObject:
    key: str
    size_bytes: int
    last_modified: Optional[float] = None


class ObjectStorage(Protocol):
    def exists(self, key: str) -> bool: ...

    def put_if_absent(self, key: str, data: bytes, metadata: Dict[str, str]) -> bool: ...

    def get(self, key: str) -> bytes: ...

    def signed_url(self, key: str, ttl_seconds: int) -> str: ...

    def list(self, prefix: str) -> List[StoredObject]: ...


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3ObjectStorage:
    """
    S3-compatible storage using boto3.

    Args:
        bucket: Bucket name
        client: Pre-built boto3 S3 client (tests pass a stubbed client)
        endpoint_url: Custom endpoint for S3-compatible providers
        region: Region name ("auto" for R2)

    Note:
        put_if_absent relies on S3 conditional writes (If-None-Match: *), so
        the existence check and the write are a single atomic request.
    """

    def __init__(
        self,
        bucket: str,
        client: Any = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("S3 bucket name must be configured")
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region or None,
        )

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise

    def put_if_absent(self, key: str, data: bytes, metadata: Dict[str, str]) -> bool:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType="application/pdf",
                Metadata={k: str(v) for k, v in metadata.items()},
                IfNoneMatch="*",
            )
        except ClientError as exc:
            if _error_code(exc) in _ALREADY_EXISTS_CODES:
                logger.info(f"Object already present at s3://{self.bucket}/{key}")
                return False
            raise
        logger.info(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{key}")
        return True

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise FileNotFoundError(f"Artifact not found: {key}") from exc
            raise
        return response["Body"].read()

    def signed_url(self, key: str, ttl_seconds: int) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )

    def list(self, prefix: str) -> List[StoredObject]:
        paginator = self._client.get_paginator("list_objects_v2")
        objects: List[StoredObject] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                modified = item.get("LastModified")
                objects.append(
                    StoredObject(
                        key=item["Key"],
                        size_bytes=item.get("Size", 0),
                        last_modified=modified.timestamp() if modified else None,
                    )
                )
        return objects


class LocalObjectStorage:
    """
    Filesystem storage with HMAC-signed download URLs.

    Objects live at {root}/{key}; metadata goes to a sidecar {key}.meta.json.
    Signed URLs point at the API's /artifacts route, which checks the
    signature and expiry with verify_signature() before serving the file.
    """

    META_SUFFIX = ".meta.json"
    TEMP_PREFIX = ".tmp-"

    def __init__(self, root: Path, public_base_url: str, signing_secret: str) -> None:
        self.root = ensure_directory(Path(root)).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self._secret = signing_secret.encode("utf-8")

    def resolve_path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not str(path).startswith(str(self.root) + "/"):
            raise ValueError(f"Invalid artifact key: {key}")
        return path

    def exists(self, key: str) -> bool:
        return self.resolve_path(key).is_file()

    def put_if_absent(self, key: str, data: bytes, metadata: Dict[str, str]) -> bool:
        path = self.resolve_path(key)
        ensure_directory(path.parent)
        # Fully write a private temp file, then hard-link it into place; the
        # link fails if the key exists, so readers never see a partial object.
        fd, tmp_name = tempfile.mkstemp(prefix=self.TEMP_PREFIX, dir=path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            try:
                os.link(tmp_path, path)
            except FileExistsError:
                logger.info(f"Object already present at {path}")
                return False
        finally:
            tmp_path.unlink(missing_ok=True)
        meta_path = path.with_name(path.name + self.META_SUFFIX)
        meta_path.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        logger.info(f"Stored {len(data)} bytes at {path}")
        return True

    def get(self, key: str) -> bytes:
        path = self.resolve_path(key)
        if not path.is_file():
            raise FileNotFoundError(f"Artifact not found: {key}")
        return path.read_bytes()

    def _signature(self, key: str, expires: int) -> str:
        return hmac.new(self._secret, f"{key}:{expires}".encode("utf-8"), hashlib.sha256).hexdigest()

    def signed_url(self, key: str, ttl_seconds: int) -> str:
        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self._signature(key, expires)})
        return f"{self.public_base_url}/artifacts/{quote(key)}?{query}"

    def verify_signature(self, key: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(key, expires), signature)

    def list(self, prefix: str) -> List[StoredObject]:
        objects: List[StoredObject] = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.name.endswith(self.META_SUFFIX) or path.name.startswith(self.TEMP_PREFIX):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                stat = path.stat()
                objects.append(StoredObject(key=key, size_bytes=stat.st_size, last_modified=stat.st_mtime))
        return objects
