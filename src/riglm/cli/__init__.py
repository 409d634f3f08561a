"""riglm CLI -- typer-based command interface.

Commands:
    riglm serve CONFIG               Run the proxy on stdio
    riglm prune CONFIG               Prune learned associations
    riglm inspect CONFIG             Show learned associations
    riglm forget CONFIG ID           Remove one learned association
"""

from __future__ import annotations

from pathlib import Path

import typer

from riglm.cli import store_cmd
from riglm.cli._errors import handle_error, load_config_or_exit

app = typer.Typer(
    name="riglm",
    help="MCP aggregation proxy that learns which tools fit the task.",
    no_args_is_help=True,
)

app.command("prune")(store_cmd.prune)
app.command("inspect")(store_cmd.inspect)
app.command("forget")(store_cmd.forget)


@app.command("serve")
def serve(
    config_path: Path = typer.Argument(..., help="Path to the proxy config file"),
) -> None:
    """Run the proxy over stdio.

    stdout carries the MCP protocol; logs go to stderr (or RIGLM_LOG_PATH
    with RIGLM_LOG_DESTINATION=jsonl).
    """
    import asyncio

    from riglm.proxy.server import ProxyStartupError, run_proxy

    config = load_config_or_exit(config_path)
    try:
        asyncio.run(run_proxy(config))
    except ProxyStartupError as e:
        handle_error(str(e))
    except KeyboardInterrupt:
        raise typer.Exit(0)


def main() -> None:
    """Entry point for the riglm CLI."""
    app()
