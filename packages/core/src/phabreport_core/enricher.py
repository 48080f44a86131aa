"""Per-revision enrichment: concurrent lookups, then row derivation."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Iterable

from phabreport_core.cache import EntityCache
from phabreport_core.errors import DataShapeError, SkippedRevision
from phabreport_core.models import Diff, ReportRow, Repository, Revision, User

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400


async def gather_bounded(aws: Iterable[Awaitable], limiter: asyncio.Semaphore) -> list:
    """Await all of ``aws`` with at most ``limiter``'s value running at once.

    Results come back in input order. The first failure cancels whatever is
    still running and is re-raised.
    """

    async def _run(aw: Awaitable):
        async with limiter:
            return await aw

    aws = list(aws)
    tasks = [asyncio.ensure_future(_run(aw)) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        # Tasks cancelled before their first step never awaited their coroutine.
        for aw in aws:
            if asyncio.iscoroutine(aw):
                aw.close()
        raise


def _parse_diffs(payload) -> list[Diff]:
    if payload is None:
        return []
    if isinstance(payload, dict):
        payload = list(payload.values())
    if not isinstance(payload, list):
        raise DataShapeError(f"differential.querydiffs returned {type(payload).__name__}")
    return [Diff.from_api(d) for d in payload]


def _format_date(timestamp: int, date_format: str, tz: str) -> str:
    if tz == "utc":
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(date_format)
    return datetime.fromtimestamp(timestamp).strftime(date_format)


def _utc_offset(timestamp: int, tz: str) -> int:
    if tz == "utc":
        return 0
    return int(datetime.fromtimestamp(timestamp).astimezone().utcoffset().total_seconds())


def _whole_days(start: int, end: int, tz: str = "utc") -> int:
    """Whole days between two timestamps as read on the wall clock of ``tz``.

    A span crossing a DST change counts in local days, not 86400-second
    blocks. Partial days are truncated toward zero.
    """
    elapsed = (end + _utc_offset(end, tz)) - (start + _utc_offset(start, tz))
    return int(elapsed / _SECONDS_PER_DAY)


def derive_row(
    revision: Revision,
    diffs: list[Diff],
    repo: Repository | None,
    commit_paths,
    reviewers: list[User | None],
    config: dict,
) -> ReportRow:
    """Build a ReportRow from a revision and the results of its lookups.

    Pure: nothing passed in is modified.
    """
    date_format = config.get("date_format", "%Y-%m-%d")
    tz = config.get("timezone", "local")

    if diffs:
        first = min(d.date_created for d in diffs)
        last = max(d.date_created for d in diffs)
        first_diff = _format_date(first, date_format, tz)
        last_diff = _format_date(last, date_format, tz)
        dev_time = _whole_days(first, last, tz)
    else:
        policy = config.get("empty_diffs", "blank")
        if policy == "error":
            raise DataShapeError(f"D{revision.id} has no diffs")
        if policy == "skip":
            raise SkippedRevision(f"D{revision.id} has no diffs")
        logger.warning("D%d has no diffs; leaving diff timing blank", revision.id)
        first_diff = last_diff = None
        dev_time = None

    reviewer_names = []
    for phid, user in zip(revision.reviewer_phids, reviewers):
        if user is None:
            logger.warning("D%d: reviewer %s could not be resolved", revision.id, phid)
            reviewer_names.append(phid)
        else:
            reviewer_names.append(user.user_name or user.real_name or phid)

    return ReportRow(
        title=revision.title,
        uri=revision.uri,
        first_diff=first_diff,
        last_diff=last_diff,
        dev_time=dev_time,
        created=_format_date(revision.date_created, date_format, tz),
        modified=_format_date(revision.date_modified, date_format, tz),
        open_for=_whole_days(revision.date_created, revision.date_modified, tz),
        status=revision.status_name,
        reviewers=tuple(reviewer_names),
        diff_count=len(revision.diff_ids),
        line_count=revision.line_count,
        repo=(repo.name or repo.callsign) if repo is not None else None,
        commit_paths=tuple(commit_paths or ()),
    )


async def enrich_revision(
    revision: Revision,
    client: Any,
    cache: EntityCache,
    limiter: asyncio.Semaphore,
    config: dict,
) -> ReportRow:
    """Fetch diffs, repository, touched paths and reviewers, then derive the row.

    All lookups start together and are joined as one unit; any failure fails
    the whole revision.
    """
    diffs_payload, repo, commit_paths, *reviewers = await gather_bounded(
        [
            client.query_diffs(revision.id),
            cache.get_repo(revision.repository_phid),
            client.get_commit_paths(revision.id),
            *(cache.get_user(phid) for phid in revision.reviewer_phids),
        ],
        limiter,
    )
    if commit_paths is not None and not isinstance(commit_paths, list):
        raise DataShapeError(f"differential.getcommitpaths returned {type(commit_paths).__name__}")
    return derive_row(revision, _parse_diffs(diffs_payload), repo, commit_paths, reviewers, config)
