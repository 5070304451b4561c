"""
Page rendering with artifact caching and bounded retries.

The rasterizer itself is an external service: given a page and its target
geometry it returns one PDF fragment at print resolution. PageRenderer wraps
it with:
- A cache lookup under the page's content address (a hit skips rendering)
- A fixed retry schedule for transient failures
- Persisting successful renders so later compiles can reuse them
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

import httpx

from .artifact_store import ArtifactStore
from .errors import RenderFailed
from .fingerprint import page_artifact_key
from .layout import LayoutSpec
from .render_token import DEFAULT_TTL_SECONDS, create_render_token

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS = (1.0, 3.0, 10.0)


class Rasterizer(Protocol):
    def rasterize(self, collection_id: str, page_id: str, layout: LayoutSpec) -> bytes: ...


class HttpRasterizer:
    """
    Client for the page render service.

    The service renders /render/{collection_id}/{page_id} in a headless
    browser whose viewport is the base-resolution page and whose surface
    scale factor brings the output to 300 DPI.

    Args:
        base_url: Render service root URL
        token_secret: Shared secret for render capability tokens
        token_ttl_seconds: Token lifetime
        timeout_seconds: Per-request timeout
        client: Pre-built httpx client (tests pass one with a MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        token_secret: str,
        token_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        timeout_seconds: float = 90.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._secret = token_secret
        self._token_ttl = token_ttl_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def rasterize(self, collection_id: str, page_id: str, layout: LayoutSpec) -> bytes:
        token = create_render_token(self._secret, collection_id, page_id, self._token_ttl)
        params = {
            "token": token,
            "bookSize": layout.trim_size,
            "includeBleed": str(layout.include_bleed).lower(),
            "forPrint": "true",
            "viewportWidth": layout.viewport.width,
            "viewportHeight": layout.viewport.height,
            "scale": f"{layout.viewport.device_scale_factor:.6f}",
            "outputWidth": layout.output.width,
            "outputHeight": layout.output.height,
        }
        response = self._client.get(f"{self.base_url}/render/{collection_id}/{page_id}", params=params)
        response.raise_for_status()
        if not response.content.startswith(b"%PDF"):
            content_type = response.headers.get("content-type", "unknown")
            raise ValueError(f"Render service returned non-PDF content ({content_type})")
        return response.content

    def close(self) -> None:
        self._client.close()


@dataclass(frozen=True)
class RetryPolicy:
    """Delays (seconds) before each retry; one initial attempt plus len(delays) retries."""

    delays: Sequence[float] = DEFAULT_RETRY_DELAYS

    @property
    def max_attempts(self) -> int:
        return len(self.delays) + 1


@dataclass
class RenderedPage:
    page_id: str
    key: str
    cached: bool
    size_bytes: int


class PageRenderer:
    """
    Renders single pages through the artifact cache.

    Args:
        store: Artifact store holding page fragments
        rasterizer: External page rasterizer
        retry_policy: Retry schedule for failed rasterizations
        sleep: Sleep function (tests pass a recorder)
    """

    def __init__(
        self,
        store: ArtifactStore,
        rasterizer: Rasterizer,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.rasterizer = rasterizer
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def ensure_page_artifact(
        self,
        collection_id: str,
        page_id: str,
        updated_marker: str,
        layout: LayoutSpec,
    ) -> RenderedPage:
        """
        Make sure a fragment for this page version exists in the store.

        Returns:
            RenderedPage with the artifact key and whether it was a cache hit

        Raises:
            RenderFailed: If every attempt failed
        """
        key = page_artifact_key(collection_id, layout.trim_size, page_id, updated_marker)
        if self.store.exists(key):
            logger.info(f"Cache hit for page {page_id} ({key})")
            return RenderedPage(page_id=page_id, key=key, cached=True, size_bytes=0)

        pdf_bytes = self._render_with_retry(collection_id, page_id, layout)
        stored = self.store.put_page_artifact(
            key,
            pdf_bytes,
            {"page-id": page_id, "collection-id": collection_id, "trim-size": layout.trim_size},
        )
        return RenderedPage(page_id=page_id, key=key, cached=False, size_bytes=stored.size_bytes)

    def render(self, collection_id: str, page_id: str, updated_marker: str, layout: LayoutSpec) -> bytes:
        """Return the PDF fragment for a page version, rendering it on a cache miss."""
        rendered = self.ensure_page_artifact(collection_id, page_id, updated_marker, layout)
        return self.store.get(rendered.key)

    def _render_with_retry(self, collection_id: str, page_id: str, layout: LayoutSpec) -> bytes:
        delays = list(self.retry_policy.delays)
        attempt = 0
        while True:
            try:
                return self.rasterizer.rasterize(collection_id, page_id, layout)
            except Exception as exc:
                if attempt >= len(delays):
                    logger.error(f"Giving up on page {page_id} after {attempt + 1} attempts: {exc}")
                    raise RenderFailed(page_id, exc) from exc
                delay = delays[attempt]
                attempt += 1
                logger.warning(f"Retry {attempt}/{len(delays)} for page {page_id} in {delay}s: {exc}")
                self._sleep(delay)
