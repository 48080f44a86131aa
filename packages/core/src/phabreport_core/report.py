"""Report orchestration: whoami, revision search, sequential enrichment."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from rich.console import Console
from rich.markup import escape

from phabreport_core.cache import EntityCache
from phabreport_core.config import DEFAULT_CONFIG
from phabreport_core.enricher import enrich_revision
from phabreport_core.errors import DataShapeError, PhabReportError, SkippedRevision
from phabreport_core.models import ERROR_COLUMN, REPORT_COLUMNS, ReportRow, Revision, User

console = Console()
logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, Revision], None]


@dataclass
class RevisionResult:
    """Outcome for one revision: a row, a skip, or an error."""

    revision: Revision
    row: ReportRow | None = None
    error: str | None = None
    skipped: bool = False


@dataclass
class ReportSummary:
    """Returned by run_report so the caller can decide how the run went."""

    author: str
    total: int
    results: list[RevisionResult] = field(default_factory=list)
    finished_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def written(self) -> list[RevisionResult]:
        return [r for r in self.results if r.row is not None]

    @property
    def skipped(self) -> list[RevisionResult]:
        return [r for r in self.results if r.skipped]

    @property
    def failed(self) -> list[RevisionResult]:
        return [r for r in self.results if r.error is not None]


def report_columns(config: dict) -> list[str]:
    """Columns the sink should be opened with for this configuration."""
    if config.get("on_error") == "annotate":
        return [*REPORT_COLUMNS, ERROR_COLUMN]
    return list(REPORT_COLUMNS)


def _error_row(revision: Revision, message: str) -> dict:
    return {
        "title": revision.title,
        "uri": revision.uri,
        "status": revision.status_name,
        ERROR_COLUMN: message,
    }


async def run_report(
    client: Any,
    sink: Any,
    params: dict | None = None,
    config: dict | None = None,
    cache: EntityCache | None = None,
    on_progress: ProgressCallback | None = None,
) -> ReportSummary:
    """Write one report row per revision authored by the token's owner.

    Revisions are enriched one at a time, in the order the search returned
    them. With ``on_error: halt`` any failure propagates and the sink is left
    open; with ``skip`` or ``annotate`` the failure is recorded and the run
    continues. The sink is closed exactly once, after the last row.
    """
    config = {**DEFAULT_CONFIG, **(config or {})}
    cache = cache if cache is not None else EntityCache(client)
    limiter = asyncio.Semaphore(config["max_concurrency"])
    on_error = config["on_error"]

    me_payload = await client.whoami()
    if not isinstance(me_payload, dict) or not me_payload.get("phid"):
        raise DataShapeError("user.whoami returned no 'phid'")
    me = User.from_api(me_payload)
    cache.seed_user(me)
    logger.info("Authenticated as %s", me.user_name or me.phid)

    payload = await client.query_revisions(me.phid, params)
    if not isinstance(payload, list):
        raise DataShapeError(f"differential.query returned {type(payload).__name__}, expected a list")
    revisions = [Revision.from_api(r) for r in payload]

    total = len(revisions)
    summary = ReportSummary(author=me.user_name or me.phid, total=total)
    if not total:
        console.print("[yellow]No revisions found.[/yellow]")

    for i, revision in enumerate(revisions, 1):
        try:
            row = await enrich_revision(revision, client, cache, limiter, config)
        except SkippedRevision as e:
            logger.warning("Skipping D%d: %s", revision.id, e)
            summary.results.append(RevisionResult(revision=revision, skipped=True))
            continue
        except PhabReportError as e:
            if on_error == "halt":
                raise
            logger.error("D%d failed: %s", revision.id, e)
            summary.results.append(RevisionResult(revision=revision, error=str(e)))
            if on_error == "annotate":
                sink.write(_error_row(revision, str(e)))
                console.print(
                    f"[red]wrote {i} of {total} (failed): {escape(revision.title)}[/red]",
                    soft_wrap=True,
                )
            continue

        sink.write(row.as_row())
        summary.results.append(RevisionResult(revision=revision, row=row))
        console.print(f"wrote {i} of {total}: {escape(revision.title)}", soft_wrap=True)
        if on_progress is not None:
            on_progress(i, total, revision)

    sink.close()
    return summary
