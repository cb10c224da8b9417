"""JSON read API over the stored packet records."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from aiohttp import web

from .errors import StorageError
from .service import QueryService

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("query_service", QueryService)


def _parse_limit(raw: Optional[str]) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


async def get_packets(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        limit = _parse_limit(request.query.get("limit"))
    except ValueError:
        return web.json_response({"error": "limit must be an integer"}, status=400)
    sort = request.query.get("sort", "")

    loop = asyncio.get_running_loop()
    try:
        packets = await loop.run_in_executor(None, service.get_packets, limit, sort)
    except StorageError as exc:
        logger.error("Packet query failed: %s", exc)
        return web.json_response({"error": str(exc)}, status=500)

    return web.json_response([packet.to_dict() for packet in packets])


def create_app(service: QueryService) -> web.Application:
    app = web.Application()
    app[SERVICE_KEY] = service
    app.router.add_get("/api/v1/packets", get_packets)
    app.router.add_get("/packets", get_packets)
    return app


__all__ = ["SERVICE_KEY", "create_app", "get_packets"]
