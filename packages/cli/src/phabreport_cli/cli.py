"""CLI entry point for phabreport.

  phabreport OUTPUT [--limit N] [--status ...] [--param KEY=VALUE ...]

Writes one row per revision authored by the owner of the Conduit token.
"""

from __future__ import annotations

import asyncio
import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

console = Console()
logger = logging.getLogger(__name__)

_STATUSES = [
    "status-any",
    "status-open",
    "status-accepted",
    "status-needs-review",
    "status-closed",
    "status-abandoned",
]


def _build_sink(output: str, fmt: str, config: dict):
    """Instantiate the output sink for OUTPUT.

    Format selection:
      --format jsonl, or auto with a .jsonl/.ndjson path → JsonLinesSink
      anything else                                      → CsvSink

    This factory lives in cli.py so phabreport_core never learns about
    concrete output formats.
    """
    from phabreport_core.report import report_columns

    if fmt == "auto":
        fmt = "jsonl" if output.lower().endswith((".jsonl", ".ndjson")) else "csv"

    if fmt == "jsonl":
        from phabreport_sink.jsonl import JsonLinesSink

        return JsonLinesSink(output)

    from phabreport_sink.csv_sink import CsvSink

    return CsvSink(output, fieldnames=report_columns(config), list_separator=config["list_separator"])


def _parse_params(pairs: tuple[str, ...]) -> dict:
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--param")
        params[key] = value
    return params


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    # httpx logs every request at INFO; only useful when debugging.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


async def _run(credentials, sink, params: dict, config: dict):
    from phabreport_core.conduit.client import ConduitClient
    from phabreport_core.report import run_report

    async with ConduitClient(credentials.host, credentials.token, timeout=config["timeout"]) as client:
        return await run_report(client, sink, params=params, config=config)


@click.command()
@click.version_option(
    version=importlib.metadata.version("phabreport"),
    prog_name="phabreport",
)
@click.argument("output", type=click.Path(dir_okay=False, writable=True))
@click.option("--limit", type=int, default=None, help="Maximum number of revisions to fetch.")
@click.option("--status", type=click.Choice(_STATUSES), default=None, help="Only revisions in this status.")
@click.option(
    "--order",
    type=click.Choice(["order-modified", "order-created"]),
    default=None,
    help="Sort order of the revision search.",
)
@click.option(
    "--param",
    "extra_params",
    multiple=True,
    metavar="KEY=VALUE",
    help="Extra differential.query parameter, forwarded verbatim. Repeatable.",
)
@click.option("--host", default=None, help="Conduit API URL to use from the arcrc file. Defaults to the first host.")
@click.option(
    "--arcrc",
    "arcrc_path",
    default="~/.arcrc",
    show_default=True,
    envvar="PHABREPORT_ARCRC",
    help="Path to the Arcanist credential file.",
)
@click.option(
    "--config",
    "config_path",
    default=".phabreport.yml",
    show_default=True,
    envvar="PHABREPORT_CONFIG",
    help="Path to the configuration file.",
)
@click.option(
    "--on-error",
    type=click.Choice(["halt", "skip", "annotate"]),
    default=None,
    help="What to do when a revision cannot be enriched. Overrides config file.",
)
@click.option("--max-concurrency", type=click.IntRange(min=1), default=None, help="Parallel lookups per revision.")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["auto", "csv", "jsonl"]),
    default="auto",
    show_default=True,
    help="Output format. auto picks JSON Lines for .jsonl paths.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(
    output: str,
    limit: int | None,
    status: str | None,
    order: str | None,
    extra_params: tuple[str, ...],
    host: str | None,
    arcrc_path: str,
    config_path: str,
    on_error: str | None,
    max_concurrency: int | None,
    fmt: str,
    verbose: bool,
):
    """Write a report of your Differential revisions to OUTPUT.

    \b
    Credentials come from PHABREPORT_CONDUIT_URI and PHABREPORT_CONDUIT_TOKEN
    when both are set, otherwise from ~/.arcrc.
    """
    from phabreport_core.config import load_config
    from phabreport_core.errors import ConfigError, PhabReportError
    from phabreport_cli.auth import resolve_credentials

    _configure_logging(verbose)

    params = _parse_params(extra_params)
    for key, value in (("limit", limit), ("status", status), ("order", order)):
        if value is not None:
            params[key] = value

    try:
        config = load_config(config_path, cli_overrides={"on_error": on_error, "max_concurrency": max_concurrency})
        credentials = resolve_credentials(arcrc_path, host=host)
    except ConfigError as e:
        raise click.UsageError(str(e))

    sink = _build_sink(output, fmt, config)

    try:
        summary = asyncio.run(_run(credentials, sink, params, config))
    except PhabReportError as e:
        raise click.ClickException(str(e))

    written = len(summary.written)
    line = f"[green]Wrote {written} of {summary.total} revision(s) to {output}.[/green]"
    if summary.skipped:
        line += f" [yellow]{len(summary.skipped)} skipped.[/yellow]"
    if summary.failed:
        line += f" [red]{len(summary.failed)} failed.[/red]"
    console.print(line, soft_wrap=True)
