"""CLI package for tagtrail"""

import typer

from tagtrail.cli.db import db_app
from tagtrail.cli.serve import serve
from tagtrail.cli.stats import stats

app = typer.Typer(help="Tag scan, link click and video event telemetry", no_args_is_help=True)

app.command("serve", help="Start the tagtrail API server")(serve)
app.command("stats", help="Show link click and video statistics for a tag")(stats)
app.add_typer(db_app, name="db")


def main() -> None:
    app()
