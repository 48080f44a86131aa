"""Records fetched from Conduit and the report row derived from them.

Conduit encodes most integers as strings and returns PHP arrays that are
either JSON lists or JSON objects depending on whether they are empty, so
every ``from_api`` constructor normalises both shapes. All records are frozen:
deriving a report row never mutates what was fetched.
"""

from __future__ import annotations

from dataclasses import dataclass

from phabreport_core.errors import DataShapeError

# Column names and order of the written report. Existing spreadsheets
# depend on these exact names.
REPORT_COLUMNS = [
    "title",
    "uri",
    "firstDiff",
    "lastDiff",
    "devTime",
    "created",
    "modified",
    "openFor",
    "status",
    "reviewers",
    "diffCount",
    "lineCount",
    "repo",
    "commitPaths",
]
ERROR_COLUMN = "error"


def _values(payload) -> list:
    """Return the values of a Conduit list-or-map as a list, in order."""
    if payload is None:
        return []
    if isinstance(payload, dict):
        return list(payload.values())
    if isinstance(payload, (list, tuple)):
        return list(payload)
    raise DataShapeError(f"Expected a list or map, got {type(payload).__name__}")


def _record(payload, kind: str) -> dict:
    if not isinstance(payload, dict):
        raise DataShapeError(f"{kind} record is a {type(payload).__name__}, expected a map")
    return payload


def _int(payload: dict, key: str, default: int | None = None) -> int:
    value = payload.get(key, default)
    if value is None:
        raise DataShapeError(f"Missing field {key!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DataShapeError(f"Field {key!r} is not an integer: {value!r}")


def _ids(values: list, key: str) -> tuple[int, ...]:
    try:
        return tuple(int(v) for v in values)
    except (TypeError, ValueError):
        raise DataShapeError(f"Field {key!r} holds a non-integer id: {values!r}")


@dataclass(frozen=True)
class Revision:
    id: int
    phid: str
    title: str
    uri: str
    date_created: int
    date_modified: int
    status_name: str
    diff_ids: tuple[int, ...]
    line_count: int
    repository_phid: str | None
    reviewer_phids: tuple[str, ...]

    @classmethod
    def from_api(cls, payload: dict) -> Revision:
        payload = _record(payload, "Revision")
        return cls(
            id=_int(payload, "id"),
            phid=payload.get("phid", ""),
            title=payload.get("title", ""),
            uri=payload.get("uri", ""),
            date_created=_int(payload, "dateCreated"),
            date_modified=_int(payload, "dateModified"),
            status_name=payload.get("statusName", ""),
            diff_ids=_ids(_values(payload.get("diffs")), "diffs"),
            line_count=_int(payload, "lineCount", 0),
            repository_phid=payload.get("repositoryPHID") or None,
            reviewer_phids=tuple(_values(payload.get("reviewers"))),
        )


@dataclass(frozen=True)
class Diff:
    id: int
    date_created: int

    @classmethod
    def from_api(cls, payload: dict) -> Diff:
        payload = _record(payload, "Diff")
        return cls(id=_int(payload, "id"), date_created=_int(payload, "dateCreated"))


@dataclass(frozen=True)
class User:
    phid: str
    user_name: str
    real_name: str = ""

    @classmethod
    def from_api(cls, payload: dict) -> User:
        payload = _record(payload, "User")
        if not payload.get("phid"):
            raise DataShapeError("User record has no 'phid'")
        return cls(
            phid=payload["phid"],
            user_name=payload.get("userName", ""),
            real_name=payload.get("realName", ""),
        )


@dataclass(frozen=True)
class Repository:
    phid: str
    name: str
    callsign: str = ""

    @classmethod
    def from_api(cls, payload: dict) -> Repository:
        payload = _record(payload, "Repository")
        return cls(
            phid=payload.get("phid", ""),
            name=payload.get("name", ""),
            callsign=payload.get("callsign") or "",
        )


@dataclass(frozen=True)
class ReportRow:
    """One line of the report, derived from a revision and its lookups."""

    title: str
    uri: str
    first_diff: str | None
    last_diff: str | None
    dev_time: int | None
    created: str
    modified: str
    open_for: int
    status: str
    reviewers: tuple[str, ...]
    diff_count: int
    line_count: int
    repo: str | None
    commit_paths: tuple[str, ...]

    def as_row(self) -> dict:
        """Return the row keyed by report column.

        ``repo`` is left out entirely when no repository was found.
        """
        row = {
            "title": self.title,
            "uri": self.uri,
            "firstDiff": self.first_diff,
            "lastDiff": self.last_diff,
            "devTime": self.dev_time,
            "created": self.created,
            "modified": self.modified,
            "openFor": self.open_for,
            "status": self.status,
            "reviewers": list(self.reviewers),
            "diffCount": self.diff_count,
            "lineCount": self.line_count,
        }
        if self.repo is not None:
            row["repo"] = self.repo
        row["commitPaths"] = list(self.commit_paths)
        return row
