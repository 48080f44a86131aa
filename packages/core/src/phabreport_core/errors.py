"""Exception types raised by phabreport_core.

Library code raises these and never exits; the CLI decides how each one maps
to a message and an exit code.
"""

from __future__ import annotations


class PhabReportError(Exception):
    """Base exception for all report errors."""


class ConfigError(PhabReportError):
    """Raised when credentials or configuration are missing or malformed."""


class TransportError(PhabReportError):
    """Raised when a Conduit call fails or returns an unusable response."""

    def __init__(self, message: str, method: str | None = None):
        super().__init__(message)
        self.method = method


class DataShapeError(PhabReportError):
    """Raised when an API response lacks a field the report depends on."""


class SkippedRevision(PhabReportError):
    """Signals that a revision was deliberately left out of the report."""
