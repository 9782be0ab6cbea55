"""
CLI command for per-tag link and video statistics
"""

import asyncio
import json
from typing import Any, Dict, Optional

import httpx
import typer
from rich.console import Console
from rich.table import Table

from tagtrail.storage.database import create_pooled_session, dispose_engine
from tagtrail.storage.event_repository import EventRepository

console = Console()


async def _load_stats_from_database(tag_id: str) -> Dict[str, Any]:
    try:
        async with create_pooled_session() as session:
            repo = EventRepository(session)
            return {
                "links": await repo.link_click_stats(tag_id),
                "video": await repo.video_event_stats(tag_id),
            }
    finally:
        await dispose_engine()


def _load_stats_from_api(api_url: str, tag_id: str) -> Dict[str, Any]:
    params = {"tagId": tag_id}
    base = api_url.rstrip("/")
    with httpx.Client(timeout=10.0) as client:
        links = client.get(f"{base}/api/link-click", params=params)
        links.raise_for_status()
        video = client.get(f"{base}/api/video-event", params=params)
        video.raise_for_status()
    return {"links": links.json(), "video": video.json()}


def stats(
    tag_id: str = typer.Argument(..., help="Tag id"),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, json"
    ),
    api_url: Optional[str] = typer.Option(
        None, "--api-url", help="Query a running server instead of the database"
    ),
):
    """
    Display link click and video statistics for a tag

    Example: tagtrail stats promo-01
    """
    if output_format not in ("table", "json"):
        console.print(f"[red]Error:[/red] Invalid format '{output_format}'. Valid options: table, json")
        raise typer.Exit(code=1)

    data = None
    if api_url:
        try:
            data = _load_stats_from_api(api_url, tag_id)
        except httpx.HTTPError as api_error:
            console.print(
                f"[yellow]Warning:[/yellow] Failed to query via API ({api_error}), falling back to direct database access"
            )

    try:
        if data is None:
            data = asyncio.run(_load_stats_from_database(tag_id))
    except Exception as e:
        console.print(f"[red]Error fetching statistics:[/red] {str(e)}")
        raise typer.Exit(code=1)

    if output_format == "json":
        console.print(json.dumps(data, indent=2))
        return

    links = data["links"]
    table = Table(title=f"Link clicks for {tag_id} ({links['total']} total)")
    table.add_column("Link", style="cyan")
    table.add_column("Label")
    table.add_column("Clicks", style="green", justify="right")
    table.add_column("%", justify="right")
    for link in links["links"]:
        table.add_row(link["linkUrl"], link["linkLabel"] or "-", str(link["clicks"]), str(link["percent"]))
    console.print(table)

    video = data["video"]
    table = Table(title=f"Video events for {tag_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    for key in ("plays", "pauses", "completions", "progress25", "progress50", "progress75", "progress100"):
        table.add_row(key, str(video[key]))
    table.add_row("avgWatchTime", "-" if video["avgWatchTime"] is None else f"{video['avgWatchTime']}s")
    table.add_row("maxWatchTime", "-" if video["maxWatchTime"] is None else f"{video['maxWatchTime']}s")
    console.print(table)
