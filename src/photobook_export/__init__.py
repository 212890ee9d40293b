"""
PhotoBook Export Backend - asynchronous album-to-PDF export service

This package provides a FastAPI-based web service that turns the canvas
pages of a photo-book album into a single downloadable PDF. It enables:

- Creating export tasks that return immediately with a task id
- Rendering each page in headless Chromium, one page at a time
- Durable, pollable progress for every task
- Skipping individual pages that fail while still producing the album
- Merging per-page PDFs and storing the result locally or on S3

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - export_manager: Export task lifecycle and orchestration
    - layout: Pure canvas description -> HTML rendering
    - renderer: Playwright/Chromium adapter producing one PDF per page
    - merger: PDF concatenation
    - database: SQLite task store and album lookup
    - storage: Write-once artifact storage (filesystem or S3)
    - configuration: OmegaConf settings with environment overrides
    - models: Pydantic models for canvas data and API payloads

Usage:
    Run the API server with:
        uvicorn photobook_export.main:app --host 0.0.0.0 --port 8000

    Chromium must be installed once with:
        playwright install chromium
"""
