"""
CLI command for running the API server
"""

from typing import Optional

import typer

from tagtrail.logger import get_logger
from tagtrail.main import start_server

logger = get_logger(__name__)


def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (default: PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
) -> None:
    """Start the tagtrail API server"""
    logger.info("Start the tagtrail API server")
    start_server(host=host, port=port, reload=reload)
