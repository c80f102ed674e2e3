"""Exception taxonomy for the enrichment pipeline."""

from __future__ import annotations

from typing import List, Optional, Tuple


class EnrichmentError(Exception):
    """Base class for enrichment failures."""


class FetchError(EnrichmentError):
    """Network failure, non-2xx status or a non-HTML body."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None) -> None:
        self.url = url
        self.reason = reason
        self.status = status
        detail = f"{reason} (status {status})" if status is not None else reason
        super().__init__(f"{url}: {detail}")


class ParseError(EnrichmentError):
    """Markup could not be parsed; callers treat it as an empty page."""


class ValidationTimeout(EnrichmentError):
    """Image probe exceeded its deadline; never escapes the validator."""


class ResolutionExhausted(EnrichmentError):
    """Every resolution strategy failed for a URL."""

    def __init__(self, url: str, attempts: List[Tuple[str, str]]) -> None:
        self.url = url
        self.attempts = attempts
        summary = "; ".join(f"{name}: {error}" for name, error in attempts) or "no strategies available"
        super().__init__(f"metadata resolution exhausted for {url} ({summary})")


class IllegalTransition(EnrichmentError):
    """A metadata status change that the state machine does not allow."""


__all__ = [
    "EnrichmentError",
    "FetchError",
    "ParseError",
    "ValidationTimeout",
    "ResolutionExhausted",
    "IllegalTransition",
]
