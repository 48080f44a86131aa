"""JsonLinesSink: one JSON object per revision.

Keeps list columns as arrays and leaves absent keys absent, which makes it
the easier format to post-process with jq or pandas.
"""

from __future__ import annotations

import json

from phabreport_sink.base import BaseSink


class JsonLinesSink(BaseSink):
    def __init__(self, path: str):
        self.path = path
        self._file = open(path, "w", encoding="utf-8")

    def write(self, row: dict) -> None:
        self._file.write(json.dumps(row, ensure_ascii=False) + "\n")
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
