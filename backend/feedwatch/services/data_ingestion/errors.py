"""
Exception hierarchy for the ingestion pipeline.
"""

from typing import Optional


class IngestionError(Exception):
    """Base class for all ingestion failures."""


class FetchError(IngestionError):
    """An HTTP request could not produce a usable response."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{message} ({url})")
        self.url = url


class NetworkError(FetchError):
    """DNS failure, refused connection or another transport problem."""


class FetchTimeoutError(FetchError):
    """The request did not complete within its timeout."""


class HttpStatusError(FetchError):
    """The server answered with a non-success status."""

    def __init__(self, url: str, status_code: int, retry_after: Optional[str] = None):
        super().__init__(url, f"HTTP {status_code}")
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class DuplicateArticleError(IngestionError):
    """An article with the same link is already stored."""

    def __init__(self, link: str):
        super().__init__(f"Article already exists: {link}")
        self.link = link


class PassInProgressError(IngestionError):
    """Another ingestion pass holds the running flag."""


class ExtractorError(IngestionError):
    """The external article extractor failed or returned garbage."""
