"""Exception types shared by fetchers, aggregation and the orchestrator."""

from __future__ import annotations

from typing import Optional


class RelaywatchError(Exception):
    """Base class for errors raised by relaywatch."""


class FetchFailure(RelaywatchError):
    """Raised when a source fetch fails (network, HTTP status or payload)."""

    def __init__(
        self,
        source: str,
        message: str,
        original_error: Optional[BaseException] = None,
    ) -> None:
        self.source = source
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source}: {message}")


class ValidationFailure(RelaywatchError, ValueError):
    """Raised for malformed user input before any fetch is issued."""


class MergeInconsistency(RelaywatchError):
    """Raised when merged sources disagree on their date representation."""
