"""
Tests for Scrapbook Press API endpoints.

Tests cover:
- Health check and trim size catalog
- Layout and cover geometry
- Page upserts
- Compile requests (new job, cache hit, errors, pre-flight blocking)
- Job detail, status and download refresh
- Signed artifact downloads
- Compiled book listing and order validation
"""

from urllib.parse import urlparse

from conftest import COLLECTION_ID


def _compile(client, **extra):
    body = {"collectionId": COLLECTION_ID, "trimSize": "8x8", "ownerName": "Smith", **extra}
    return client.post("/compilations", json=body)


class TestHealthCheck:
    """Tests for the /healthz endpoint."""

    def test_health_check_returns_ok(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestGeometry:
    """Tests for trim size and layout endpoints."""

    def test_trim_sizes(self, client):
        response = client.get("/trim-sizes")
        assert response.status_code == 200
        keys = [size["key"] for size in response.json()]
        assert keys == ["8x8", "10x10", "8.5x11"]

    def test_layout_spec(self, client):
        response = client.get("/layout/8x8", params={"page_count": 20})
        assert response.status_code == 200

        data = response.json()
        assert data["output"] == {"width": 2475, "height": 2475}
        assert data["safety_box"] == {"x": 188, "y": 188, "width": 2024, "height": 2024}
        assert data["gutter"]["needed"] is False

    def test_layout_unknown_trim(self, client):
        response = client.get("/layout/6x9")
        assert response.status_code == 400
        assert "6x9" in response.json()["detail"]

    def test_cover_spread(self, client):
        response = client.get("/layout/8x8/cover", params={"page_count": 100})
        assert response.status_code == 200

        data = response.json()
        assert data["pdf_width"] == 4943
        assert data["spine_width_px"] == 68
        assert data["height_pt"] == 594

    def test_cover_spread_bad_binding(self, client):
        response = client.get("/layout/8x8/cover", params={"page_count": 10, "binding": "spiral"})
        assert response.status_code == 400


class TestPages:
    """Tests for the page upsert endpoint."""

    def test_upsert_page(self, client, page_provider):
        response = client.put(
            f"/collections/{COLLECTION_ID}/pages/p9",
            json={"updatedMarker": "2024-05-01T10:00:00Z", "title": "Summer", "order": 3, "locked": True},
        )
        assert response.status_code == 200
        assert response.json()["page_id"] == "p9"

        stored = page_provider.get_page(COLLECTION_ID, "p9")
        assert stored.updated_marker == "2024-05-01T10:00:00Z"
        assert stored.locked is True


class TestCompilations:
    """Tests for POST /compilations."""

    def test_new_compile_is_accepted(self, client, add_pages):
        add_pages(3)
        response = _compile(client)

        assert response.status_code == 202
        data = response.json()
        assert data["cached"] is False
        assert data["pageCount"] == 3
        assert data["estimatedMinutes"] == 1
        assert data["jobId"]

    def test_repeat_compile_is_served_from_cache(self, client, add_pages, rasterizer):
        add_pages(3)
        first = _compile(client).json()
        calls = len(rasterizer.calls)

        response = _compile(client)

        assert response.status_code == 200
        data = response.json()
        assert data["cached"] is True
        assert data["jobId"] == first["jobId"]
        assert data["finalPageCount"] == 4
        assert data["downloadUrl"].startswith("http://testserver/artifacts/")
        assert len(rasterizer.calls) == calls

    def test_invalid_trim_size(self, client, add_pages):
        add_pages(1)
        response = _compile(client, trimSize="6x9")
        assert response.status_code == 400

    def test_no_pages(self, client):
        response = _compile(client)
        assert response.status_code == 400
        assert "No pages" in response.json()["detail"]

    def test_critical_findings_require_acknowledgment(self, client, add_pages):
        add_pages(2, items={"p1": [{"id": "i1", "x": 0, "y": 0, "width": 100, "height": 100}]})

        response = _compile(client)

        assert response.status_code == 422
        data = response.json()
        assert data["requiresAcknowledgment"] is True
        assert data["validationFailures"]["summary"]["critical_page_ids"] == ["p1"]
        assert data["validationFailures"]["pages"][0]["page_id"] == "p1"

        acknowledged = _compile(client, acknowledgeWarnings=True)
        assert acknowledged.status_code == 202
        assert acknowledged.json()["validationSummary"]["total_critical"] == 1


class TestJobs:
    """Tests for job detail, status and download endpoints."""

    def test_get_job(self, client, add_pages):
        add_pages(2)
        job_id = _compile(client).json()["jobId"]

        response = client.get(f"/jobs/{job_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "complete"
        assert data["final_page_count"] == 2
        assert [page["page_id"] for page in data["pages"]] == ["p1", "p2"]

    def test_job_status(self, client, add_pages):
        add_pages(2)
        job_id = _compile(client).json()["jobId"]

        data = client.get(f"/jobs/{job_id}/status").json()
        assert data["status"] == "complete"
        assert data["pages_rendered"] == 2
        assert data["pages_total"] == 2

    def test_failed_job_status(self, client, add_pages, rasterizer):
        add_pages(2)
        rasterizer.failures["p2"] = -1
        job_id = _compile(client).json()["jobId"]

        data = client.get(f"/jobs/{job_id}/status").json()
        assert data["status"] == "failed"
        assert data["failed_page_id"] == "p2"

    def test_unknown_job(self, client):
        assert client.get("/jobs/nope").status_code == 404
        assert client.get("/jobs/nope/status").status_code == 404
        assert client.post("/jobs/nope/trigger").status_code == 404
        assert client.post("/jobs/nope/refresh-download").status_code == 404

    def test_list_collection_jobs(self, client, add_pages):
        add_pages(1)
        job_id = _compile(client).json()["jobId"]

        jobs = client.get(f"/collections/{COLLECTION_ID}/jobs").json()
        assert [job["id"] for job in jobs] == [job_id]

    def test_refresh_download(self, client, add_pages):
        add_pages(2)
        job_id = _compile(client).json()["jobId"]

        response = client.post(f"/jobs/{job_id}/refresh-download")
        assert response.status_code == 200
        assert response.json()["expiresIn"] == 3600

    def test_refresh_download_for_failed_job(self, client, add_pages, rasterizer):
        add_pages(1)
        rasterizer.failures["p1"] = -1
        job_id = _compile(client).json()["jobId"]

        response = client.post(f"/jobs/{job_id}/refresh-download")
        assert response.status_code == 409

    def test_create_cover(self, client, add_pages):
        add_pages(2)
        job_id = _compile(client).json()["jobId"]

        response = client.post(f"/jobs/{job_id}/cover", json={"binding": "hard"})
        assert response.status_code == 200
        assert response.json()["binding"] == "hard"

    def test_order_without_partner_credentials(self, client, add_pages):
        add_pages(2)
        job_id = _compile(client).json()["jobId"]
        address = {"name": "Pat", "street1": "1 Main", "city": "Town", "postalCode": "12345", "country": "US"}

        response = client.post("/orders", json={"jobId": job_id, "shippingAddress": address})
        assert response.status_code == 502

    def test_order_rejects_unknown_paper_and_binding(self, client):
        address = {"name": "Pat", "street1": "1 Main", "city": "Town", "postalCode": "12345", "country": "US"}
        base = {"jobId": "any", "shippingAddress": address}

        glossy = client.post("/orders", json={**base, "paperType": "glossy"})
        assert glossy.status_code == 422
        assert "paper_type" in str(glossy.json()["detail"])

        spiral = client.post("/orders", json={**base, "binding": "spiral"})
        assert spiral.status_code == 422
        assert "binding" in str(spiral.json()["detail"])

    def test_list_compiled_books(self, client, add_pages):
        add_pages(2)
        _compile(client)
        _compile(client, forceRecompile=True)

        books = client.get(f"/collections/{COLLECTION_ID}/books").json()
        assert len(books) == 2
        assert all(book["key"].startswith(f"{COLLECTION_ID}/compiled/") for book in books)
        assert all(book["size_bytes"] > 0 for book in books)

        response = client.get(books[0]["download_url"])
        assert response.status_code == 200
        assert response.content.startswith(b"%PDF")

    def test_list_compiled_books_empty(self, client):
        assert client.get("/collections/nobody/books").json() == []

    def test_webhook_for_unknown_order(self, client):
        response = client.post("/webhooks/fulfillment", json={"jobId": "123", "status": {"name": "SHIPPED"}})
        assert response.status_code == 200
        assert response.json() == {"received": True, "order_id": None}


class TestArtifactDownload:
    """Tests for signed local artifact downloads."""

    def test_download_with_valid_signature(self, client, add_pages):
        add_pages(2)
        url = _compile(client).json()
        download_url = client.get(f"/jobs/{url['jobId']}").json()["download_url"]

        response = client.get(download_url)
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")

    def test_tampered_signature_is_rejected(self, client, add_pages):
        add_pages(2)
        job_id = _compile(client).json()["jobId"]
        download_url = urlparse(client.get(f"/jobs/{job_id}").json()["download_url"])

        response = client.get(f"{download_url.path}?expires=9999999999&signature=deadbeef")
        assert response.status_code == 403
