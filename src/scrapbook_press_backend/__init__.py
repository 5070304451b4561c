"""
Scrapbook Press Backend - print-ready book compilation service

This package provides a FastAPI-based web service that turns a collection of
individually authored scrapbook pages into a single print-ready PDF for a
print-on-demand partner. It enables:

- Pixel-exact page and cover geometry for each supported trim size
- Pre-flight safety-zone validation with a persisted warning record
- Resumable, batched page rendering with per-page caching and retries
- Immutable compiled-book artifacts with time-boxed signed download URLs
- Cover generation and print order handoff to the fulfillment partner

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - job_manager: Job lifecycle, batch dispatch and merge coordination
    - layout: Trim, bleed, safety, gutter and cover-spread calculations
    - renderer: Page rasterization through the artifact cache
    - artifact_store / storage: Write-once artifact storage (S3 or local)
    - models: Pydantic models for request/response validation
    - configuration: Config loading and merging logic

Usage:
    Run the API server with:
        uvicorn scrapbook_press_backend.main:app --reload --host 0.0.0.0 --port 8000
"""
