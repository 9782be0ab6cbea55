"""
Main entry point for the tagtrail API service
"""

import time
import warnings

import uvicorn

from tagtrail.api.server import create_app
from tagtrail.config.settings import settings
from tagtrail.logger import get_logger

# Suppress specific warnings for cleaner output
warnings.filterwarnings("ignore", category=DeprecationWarning, module="websockets")
warnings.filterwarnings("ignore", category=DeprecationWarning, module="uvicorn")

logger = get_logger(__name__)


def start_server(host: str = None, port: int = None, reload: bool = False) -> None:
    """
    Start the API server with uvicorn

    Args:
        host: Bind address; defaults to settings.api_host
        port: Bind port; defaults to settings.api_port
        reload: Restart on code changes (development only)
    """
    start_time = time.time()
    host = host or settings.api_host
    port = port or settings.api_port

    logger.info(f"Geo lookup: {'enabled' if settings.geo_enabled else 'disabled'}")
    if not settings.ip_hash_secret:
        logger.warning("IP_HASH_SECRET is not set; keyed IP hashes will be stored as NULL")

    if reload:
        # Reload needs an import string, not an app instance
        app = "tagtrail.main:create_app"
        factory = True
    else:
        app = create_app()
        factory = False

    startup_time = time.time() - start_time
    logger.info(f"Service initialization completed in {startup_time:.2f} seconds")
    logger.info(f"Starting tagtrail on {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        factory=factory,
        reload=reload,
        loop="asyncio",  # Use asyncio event loop
        proxy_headers=True,
        forwarded_allow_ips="*",
        access_log=True,
        log_level=settings.log_level.lower(),
    )


def main():
    start_server()


if __name__ == "__main__":
    main()
