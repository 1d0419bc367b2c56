"""Typed failures raised by the price-history and simulation layers."""

from __future__ import annotations

from typing import Optional


class GoldSilverError(Exception):
    """Base class for every failure the core surfaces to callers."""


class ValidationError(GoldSilverError):
    """Inputs are inconsistent (for example an end date before the start date)."""


class ParseError(GoldSilverError):
    """A price file could not be read at all.

    Individual unreadable rows never raise; they are dropped and counted.
    """


class FetchError(GoldSilverError):
    """The remote price API failed terminally for a request."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.attempts = attempts
