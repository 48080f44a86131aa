"""Abstract sink interface.

The report driver depends on this shape only: ``write(row)`` then ``close()``.
Concrete sinks decide how rows reach disk, so output formats are swappable
without touching phabreport_core.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseSink(ABC):
    """Destination for report rows, written in order and closed once."""

    @abstractmethod
    def write(self, row: dict) -> None:
        """Append one row. Keys absent from ``row`` are written as empty."""

    def close(self) -> None:
        """Flush and release the destination.

        Default is a no-op so callers can always call close() safely.
        """

    def __enter__(self) -> BaseSink:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
