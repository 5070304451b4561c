"""
Tests for page rendering, retries and render tokens.
"""

import httpx
import pytest
from conftest import COLLECTION_ID, FakeRasterizer, make_pdf

from scrapbook_press_backend.errors import RenderFailed
from scrapbook_press_backend.fingerprint import page_artifact_key
from scrapbook_press_backend.layout import get_layout_spec
from scrapbook_press_backend.render_token import (
    InvalidRenderToken,
    create_render_token,
    verify_render_token,
)
from scrapbook_press_backend.renderer import HttpRasterizer, PageRenderer, RetryPolicy


@pytest.fixture
def layout():
    return get_layout_spec("8x8", include_bleed=True, page_count=20)


class TestRetries:
    """Failed rasterizations are retried after 1s, 3s and 10s."""

    def test_default_policy(self):
        policy = RetryPolicy()
        assert tuple(policy.delays) == (1.0, 3.0, 10.0)
        assert policy.max_attempts == 4

    def test_succeeds_on_third_attempt(self, store, sleeps, layout):
        rasterizer = FakeRasterizer({"p1": 2})
        renderer = PageRenderer(store, rasterizer, sleep=sleeps.append)

        rendered = renderer.ensure_page_artifact(COLLECTION_ID, "p1", "v1", layout)

        assert rasterizer.calls_for("p1") == 3
        assert sleeps == [1.0, 3.0]
        assert rendered.cached is False
        assert store.exists(rendered.key)

    def test_gives_up_after_four_attempts(self, store, sleeps, layout):
        rasterizer = FakeRasterizer({"p1": -1})
        renderer = PageRenderer(store, rasterizer, sleep=sleeps.append)

        with pytest.raises(RenderFailed) as excinfo:
            renderer.ensure_page_artifact(COLLECTION_ID, "p1", "v1", layout)

        assert excinfo.value.page_id == "p1"
        assert rasterizer.calls_for("p1") == 4
        assert sleeps == [1.0, 3.0, 10.0]
        assert not store.exists(page_artifact_key(COLLECTION_ID, "8x8", "p1", "v1"))

    def test_custom_policy(self, store, sleeps, layout):
        rasterizer = FakeRasterizer({"p1": -1})
        renderer = PageRenderer(store, rasterizer, retry_policy=RetryPolicy(delays=(0.5,)), sleep=sleeps.append)

        with pytest.raises(RenderFailed):
            renderer.ensure_page_artifact(COLLECTION_ID, "p1", "v1", layout)
        assert rasterizer.calls_for("p1") == 2
        assert sleeps == [0.5]


class TestCaching:
    """Page fragments are reused while the page is unchanged."""

    def test_cache_hit_skips_rasterizer(self, renderer, rasterizer, layout):
        first = renderer.ensure_page_artifact(COLLECTION_ID, "p1", "v1", layout)
        second = renderer.ensure_page_artifact(COLLECTION_ID, "p1", "v1", layout)

        assert first.cached is False
        assert second.cached is True
        assert second.key == first.key
        assert rasterizer.calls == ["p1"]

    def test_edited_page_is_rendered_again(self, renderer, rasterizer, layout):
        renderer.ensure_page_artifact(COLLECTION_ID, "p1", "v1", layout)
        edited = renderer.ensure_page_artifact(COLLECTION_ID, "p1", "v2", layout)

        assert edited.cached is False
        assert rasterizer.calls_for("p1") == 2

    def test_render_returns_stored_bytes(self, renderer, layout):
        data = renderer.render(COLLECTION_ID, "p1", "v1", layout)
        assert data.startswith(b"%PDF")


class TestHttpRasterizer:
    """HttpRasterizer against a mocked render service."""

    def test_requests_page_with_print_geometry(self, layout):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, content=make_pdf(1), headers={"content-type": "application/pdf"})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        rasterizer = HttpRasterizer("http://render.local/", "render-secret", client=client)

        data = rasterizer.rasterize(COLLECTION_ID, "p7", layout)

        assert data.startswith(b"%PDF")
        assert seen["path"] == f"/render/{COLLECTION_ID}/p7"
        params = seen["params"]
        assert params["bookSize"] == "8x8"
        assert params["includeBleed"] == "true"
        assert params["forPrint"] == "true"
        assert params["viewportWidth"] == "594"
        assert params["outputWidth"] == "2475"
        payload = verify_render_token("render-secret", params["token"])
        assert payload["collectionId"] == COLLECTION_ID
        assert payload["pageId"] == "p7"

    def test_non_pdf_body_is_an_error(self, layout):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))
        rasterizer = HttpRasterizer("http://render.local", "render-secret", client=client)

        with pytest.raises(ValueError, match="non-PDF"):
            rasterizer.rasterize(COLLECTION_ID, "p1", layout)

    def test_http_error_is_retried_then_reported(self, store, sleeps, layout):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        rasterizer = HttpRasterizer("http://render.local", "render-secret", client=client)
        renderer = PageRenderer(store, rasterizer, sleep=sleeps.append)

        with pytest.raises(RenderFailed) as excinfo:
            renderer.ensure_page_artifact(COLLECTION_ID, "p1", "v1", layout)
        assert isinstance(excinfo.value.__cause__, httpx.HTTPStatusError)
        assert len(sleeps) == 3


class TestRenderToken:
    """Short-lived per-page capability tokens."""

    def test_round_trip(self):
        token = create_render_token("s3cret", "fam1", "p1", ttl_seconds=300, now=1000)
        payload = verify_render_token("s3cret", token, now=1200)
        assert payload == {"collectionId": "fam1", "pageId": "p1", "exp": 1300}

    def test_expired(self):
        token = create_render_token("s3cret", "fam1", "p1", ttl_seconds=300, now=1000)
        with pytest.raises(InvalidRenderToken, match="expired"):
            verify_render_token("s3cret", token, now=1301)

    def test_wrong_secret(self):
        token = create_render_token("s3cret", "fam1", "p1", now=1000)
        with pytest.raises(InvalidRenderToken):
            verify_render_token("other", token, now=1000)

    def test_malformed(self):
        with pytest.raises(InvalidRenderToken):
            verify_render_token("s3cret", "not-a-token")
