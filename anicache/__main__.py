"""Command line entry point for ``python -m anicache``.

``serve`` (the default) starts the HTTP API; ``refresh`` runs one forced
refresh against the configured providers and snapshot store, then exits.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Sequence

import uvicorn

from app.config import Settings, settings
from app.errors import (
    ConfigurationError,
    EmptyRefreshError,
    ProviderError,
    SnapshotError,
)

logger = logging.getLogger(__name__)


async def refresh_once(config: Settings) -> int:
    """Force one refresh and return the number of stored anime."""

    from app.main import open_catalog_service

    async with open_catalog_service(config) as service:
        result = await service.force_refresh()
    return len(result.items)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="anicache", description=__doc__.splitlines()[0])
    parser.add_argument(
        "command",
        nargs="?",
        choices=("serve", "refresh"),
        default="serve",
        help="start the API server or run a single refresh",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "refresh":
        logging.basicConfig(level=logging.INFO)
        try:
            count = asyncio.run(refresh_once(settings))
        except (
            ConfigurationError,
            EmptyRefreshError,
            ProviderError,
            SnapshotError,
        ) as exc:
            logger.error("Refresh failed: %s", exc)
            return 1
        logger.info("Refresh stored %s anime", count)
        return 0

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
    return 0


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    raise SystemExit(main())
