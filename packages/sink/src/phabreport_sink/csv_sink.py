"""CsvSink: the default report format.

List-valued columns (reviewers, touched paths) are joined into one cell
using the configured separator. The file is flushed after
every row so an aborted run still leaves the completed rows on disk.
"""

from __future__ import annotations

import csv
import logging

from phabreport_sink.base import BaseSink

logger = logging.getLogger(__name__)


class CsvSink(BaseSink):
    def __init__(self, path: str, fieldnames: list[str], list_separator: str = ","):
        self.path = path
        self._list_separator = list_separator
        self._file = open(path, "w", newline="", encoding="utf-8")
        self._writer = csv.DictWriter(self._file, fieldnames=fieldnames, restval="", extrasaction="ignore")
        self._writer.writeheader()
        self._file.flush()

    def _cell(self, value):
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return self._list_separator.join(str(v) for v in value)
        return value

    def write(self, row: dict) -> None:
        self._writer.writerow({key: self._cell(value) for key, value in row.items()})
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
            logger.debug("Closed %s", self.path)
