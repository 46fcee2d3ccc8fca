"""AniCache: trending and upcoming anime enriched and kept in a snapshot.

The FastAPI application lives in :mod:`app.main`; this package re-exports it
for ``uvicorn anicache:app`` and hosts the command line entry point.
"""

from __future__ import annotations

from app.main import app, create_app, open_catalog_service

__all__ = ["app", "create_app", "open_catalog_service"]
