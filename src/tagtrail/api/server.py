"""
API server

Builds the Starlette application: tag redirect, direct-access pages, beacon
endpoints and the identity cookie middleware.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, List, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from tagtrail import __version__
from tagtrail.api.middleware.telemetry_cookie import TelemetryCookieMiddleware
from tagtrail.api.routes.event_routes import EventRoutes
from tagtrail.api.routes.page_routes import PageRoutes
from tagtrail.api.routes.scan_routes import ScanRoutes
from tagtrail.config.settings import settings
from tagtrail.logger import get_logger
from tagtrail.services.event_recorder import EventRecorder
from tagtrail.storage.database import create_all_tables, dispose_engine
from tagtrail.storage.migrations import ensure_columns
from tagtrail.telemetry.geo import GeoResolver

logger = get_logger(__name__)


async def health_handler(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": __version__})


def _create_routes(recorder: EventRecorder) -> List[Route]:
    """
    Create the application routes

    Returns:
        List of Route objects
    """
    routes = []

    # Tag redirect (URL written to chips and QR codes)
    scan_routes = ScanRoutes(recorder)
    routes.append(Route("/s/{tag_id}", scan_routes.handle_redirect, methods=["GET"]))
    logger.info("Added scan route: /s/{tag_id}")

    # Direct-access pages
    page_routes = PageRoutes(recorder)
    routes.append(Route("/link/{tag_id}", page_routes.handle_link_page, methods=["GET"]))
    routes.append(Route("/watch/{tag_id}", page_routes.handle_watch_page, methods=["GET"]))
    routes.append(Route("/vcard/{tag_id}", page_routes.handle_vcard_page, methods=["GET"]))
    logger.info("Added page routes: /link/{tag_id}, /watch/{tag_id}, /vcard/{tag_id}")

    # Beacons (POST) and their aggregates (GET)
    event_routes = EventRoutes(recorder)
    routes.append(Route("/api/link-click", event_routes.handle_link_click, methods=["POST"]))
    routes.append(Route("/api/link-click", event_routes.handle_link_click_stats, methods=["GET"]))
    routes.append(Route("/api/video-event", event_routes.handle_video_event, methods=["POST"]))
    routes.append(Route("/api/video-event", event_routes.handle_video_event_stats, methods=["GET"]))
    logger.info("Added event routes: /api/link-click, /api/video-event (GET, POST)")

    routes.append(Route("/health", health_handler, methods=["GET"]))

    return routes


def _create_middleware() -> List[Middleware]:
    """
    Create application middleware

    Returns:
        List of Middleware entries
    """
    # Persists identities minted by read-only page handlers
    # Cookies: httponly=True, samesite=lax, tn_visitor 1 year, tn_sess/tn_sess_ts 24h
    return [Middleware(TelemetryCookieMiddleware)]


@asynccontextmanager
async def _app_lifespan(app: Any) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager for startup and shutdown

    Creates missing tables on startup (and missing telemetry columns when
    auto_migrate is set); closes the connection pool on shutdown.
    """
    logger.info("Application startup")
    try:
        await create_all_tables()
        if settings.auto_migrate:
            await ensure_columns()
    except Exception as e:
        logger.warning(f"Database initialization failed, continuing without it: {e}")

    yield

    logger.info("Application shutdown - cleaning up resources")
    try:
        await dispose_engine()
    except Exception as e:
        logger.warning(f"Error during shutdown cleanup: {e}")
    logger.info("Shutdown complete")


def create_app(recorder: Optional[EventRecorder] = None) -> Starlette:
    """
    Create the tagtrail application

    Args:
        recorder: EventRecorder to use; defaults to one on the process-wide
            engine with a GeoResolver built from settings

    Returns:
        Starlette application instance
    """
    if recorder is None:
        recorder = EventRecorder(geo_resolver=GeoResolver())

    return Starlette(
        routes=_create_routes(recorder),
        middleware=_create_middleware(),
        lifespan=_app_lifespan,
    )
