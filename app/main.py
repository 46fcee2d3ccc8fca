"""Entry point for the FastAPI-powered anime catalog service."""

from __future__ import annotations

import logging
import secrets
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .config import Settings, settings
from .database import Database
from .errors import ConfigurationError, EmptyRefreshError, ProviderError, SnapshotError
from .models import Anime, AnimeSnapshot, Generation, ListOptions
from .services.anilist import AniListClient
from .services.anime_catalog import AnimeCatalogService
from .services.blob_store import BlobStore, DatabaseBlobStore, GistBlobStore
from .services.enrichment import EnrichmentPipeline
from .services.freshness import FreshnessPolicy
from .services.markers import MarkerStore
from .services.result_cache import ResultCache
from .services.snapshot_store import SnapshotStore
from .services.tmdb import TMDBClient
from .services.tvdb import TheTVDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


def build_catalog_service(
    config: Settings,
    *,
    anilist_http: httpx.AsyncClient,
    blob_store: BlobStore,
    tmdb_http: httpx.AsyncClient | None = None,
    tvdb_http: httpx.AsyncClient | None = None,
) -> AnimeCatalogService:
    """Wire providers, pipeline and storage into an :class:`AnimeCatalogService`."""

    tmdb = TMDBClient(config, tmdb_http) if tmdb_http is not None else None
    tvdb = TheTVDBClient(config, tvdb_http) if tvdb_http is not None else None
    pipeline = EnrichmentPipeline(
        tmdb,
        tvdb,
        MarkerStore(cooldown=timedelta(seconds=config.no_data_cooldown_seconds)),
        concurrency=config.enrichment_concurrency,
        timeout=config.provider_timeout_seconds,
        search_language=config.search_language,
        detail_language=config.metadata_language,
        translation_keys=config.tvdb_translation_keys,
    )
    freshness = FreshnessPolicy(
        config.refresh_windows,
        window_hours=config.refresh_window_hours,
        max_age=timedelta(seconds=config.data_validity_seconds),
    )
    return AnimeCatalogService(
        AniListClient(config, anilist_http),
        pipeline,
        SnapshotStore(blob_store, config.snapshot_file_name, config.snapshot_max_bytes),
        freshness,
        ResultCache(timedelta(seconds=config.result_cache_seconds)),
        refresh_poll_seconds=config.refresh_poll_seconds,
    )


@asynccontextmanager
async def open_catalog_service(
    config: Settings,
) -> AsyncIterator[AnimeCatalogService]:
    """Open HTTP clients and storage, yield a wired service, then close them."""

    async with AsyncExitStack() as exit_stack:
        anilist_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
        )
        tmdb_http = None
        if config.has_tmdb:
            tmdb_http = await exit_stack.enter_async_context(
                httpx.AsyncClient(
                    base_url=str(config.tmdb_api_url),
                    timeout=httpx.Timeout(config.provider_timeout_seconds, connect=10.0),
                )
            )
        tvdb_http = None
        if config.has_tvdb:
            tvdb_http = await exit_stack.enter_async_context(
                httpx.AsyncClient(
                    base_url=str(config.tvdb_api_url),
                    timeout=httpx.Timeout(config.provider_timeout_seconds, connect=10.0),
                )
            )

        blob_store: BlobStore
        if config.snapshot_backend == "gist":
            github_http = await exit_stack.enter_async_context(
                httpx.AsyncClient(
                    base_url=str(config.github_api_url),
                    timeout=httpx.Timeout(30.0, connect=10.0),
                    follow_redirects=True,
                )
            )
            blob_store = GistBlobStore(config, github_http)
        else:
            database = Database(config.database_url)
            exit_stack.push_async_callback(database.dispose)
            await database.create_all()
            blob_store = DatabaseBlobStore(database.session_factory)

        catalog_service = build_catalog_service(
            config,
            anilist_http=anilist_http,
            blob_store=blob_store,
            tmdb_http=tmdb_http,
            tvdb_http=tvdb_http,
        )
        exit_stack.push_async_callback(catalog_service.stop)
        yield catalog_service


@asynccontextmanager
async def lifespan(_: FastAPI):
    async with open_catalog_service(settings) as catalog_service:
        app.state.catalog_service = catalog_service
        if settings.background_refresh:
            await catalog_service.start()
        yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Trending and upcoming anime enriched with localized metadata",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_catalog_service(app: FastAPI) -> AnimeCatalogService:
    service = getattr(app.state, "catalog_service", None)
    if not isinstance(service, AnimeCatalogService):
        raise RuntimeError("Catalog service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    def _list_options(request: Request) -> ListOptions:
        try:
            return ListOptions.from_query(request.query_params)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_context=False, include_url=False)
            ) from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/anime")
    async def list_anime(request: Request) -> dict[str, Any]:
        options = _list_options(request)
        service = get_catalog_service(fastapi_app)
        try:
            items = await service.get_list_cached_or_fresh(options)
        except ConfigurationError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        except (ProviderError, SnapshotError) as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _list_response(items)

    @fastapi_app.get("/anime/new")
    async def list_new_anime() -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        return _list_response(await service.get_new_items())

    @fastapi_app.get("/anime/{identifier}")
    async def get_anime(identifier: int) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        item = await service.get_item(identifier)
        if item is None:
            raise HTTPException(status_code=404, detail="Anime not found")
        return item.to_payload()

    @fastapi_app.post("/anime/refresh")
    async def refresh_anime(request: Request) -> dict[str, Any]:
        options = _list_options(request)
        service = get_catalog_service(fastapi_app)
        try:
            result = await service.force_refresh(options)
        except ConfigurationError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        except (EmptyRefreshError, ProviderError, SnapshotError) as exc:
            logger.error("Forced refresh failed: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "success": True,
            "count": len(result.items),
            "snapshot": _snapshot_summary(result.snapshot),
        }

    @fastapi_app.delete("/anime/cache")
    async def delete_anime_cache() -> dict[str, bool]:
        service = get_catalog_service(fastapi_app)
        await service.delete_snapshot()
        return {"success": True}

    @fastapi_app.get("/cron/sync/anime")
    async def cron_sync_anime(request: Request) -> dict[str, Any]:
        if settings.cron_secret:
            expected = f"Bearer {settings.cron_secret}"
            provided = request.headers.get("authorization", "")
            if not secrets.compare_digest(provided.encode(), expected.encode()):
                raise HTTPException(status_code=401, detail="Unauthorized")

        service = get_catalog_service(fastapi_app)
        logger.info("Anime sync job started")
        try:
            items = await service.get_list_cached_or_fresh(use_result_cache=False)
        except Exception as exc:
            # Answer success regardless so the scheduler does not retry-loop.
            logger.error("Anime sync job failed: %s", exc)
            return {"success": True}
        logger.info("Anime sync job completed: %s anime", len(items))
        return {"success": True, "count": len(items)}


def _list_response(items: list[Anime]) -> dict[str, Any]:
    return {"count": len(items), "items": [item.to_payload() for item in items]}


def _generation_summary(generation: Generation) -> dict[str, Any]:
    return {
        "date": generation.date,
        "timestamp": generation.timestamp.isoformat(),
        "totalCount": generation.metadata.total_count,
        "description": generation.metadata.description,
    }


def _snapshot_summary(snapshot: AnimeSnapshot) -> dict[str, Any]:
    return {
        "current": _generation_summary(snapshot.current),
        "previous": _generation_summary(snapshot.previous),
    }


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
