"""Custom exception classes for the application."""

from typing import Optional


class PriceWatchException(Exception):
    """Base exception for all PriceWatch errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(PriceWatchException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class AlreadyExistsError(PriceWatchException):
    """Raised when creating a resource whose unique key is taken."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} with identifier '{identifier}' already exists")


class ValidationError(PriceWatchException):
    """Raised for caller errors that must never be retried."""


class InvalidURLError(ValidationError):
    """Raised when a URL is not an absolute http(s) URL."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Invalid URL: {url!r}")


class InvalidIntervalError(ValidationError):
    """Raised when a check interval falls outside 1..1440 minutes."""

    def __init__(self, minutes: int):
        self.minutes = minutes
        super().__init__(f"Check interval must be between 1 and 1440 minutes, got {minutes}")


class ScraperError(PriceWatchException):
    """Raised when a scraper encounters an error."""

    def __init__(self, domain: str, message: str):
        self.domain = domain
        super().__init__(f"Scraper error for {domain}: {message}")


class ExtractionError(ScraperError):
    """Raised when a page was fetched but no usable price could be found."""


class FetchError(PriceWatchException):
    """Raised when fetching a page fails.

    ``retryable`` tells the fetch loop whether another attempt may succeed.
    """

    retryable: bool = False

    def __init__(self, url: str, message: str, retryable: Optional[bool] = None):
        self.url = url
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)


class TransientFetchError(FetchError):
    """Connection resets, refusals, timeouts and other network failures."""

    retryable = True


class HTTPStatusFetchError(FetchError):
    """Raised for responses with status >= 400.

    Server errors and 429 are retryable, other client errors are not.
    """

    def __init__(self, url: str, status_code: int):
        self.status_code = status_code
        retryable = status_code >= 500 or status_code == 429
        super().__init__(url, f"HTTP {status_code}", retryable=retryable)


class BlockedError(FetchError):
    """Raised when the page body looks like an anti-bot or captcha page."""

    def __init__(self, url: str, indicator: str):
        self.indicator = indicator
        super().__init__(url, f"Access blocked by site ({indicator})", retryable=False)


class MonitorStateError(PriceWatchException):
    """Raised when a monitor operation is not valid in its current state."""
