"""Exception hierarchy shared across the crawler."""
from __future__ import annotations


class FipeETLError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(FipeETLError):
    """Environment configuration is missing or invalid."""


class ParseError(FipeETLError, ValueError):
    """A raw catalog field could not be decoded."""


class MalformedCode(ParseError):
    """Composite code or label does not have the expected shape."""


class UnknownMonth(ParseError):
    """Reference label names a month that is not recognised."""


class MalformedPrice(ParseError):
    """Price string is not a localized BRL amount."""


class FipeAPIError(FipeETLError):
    """The FIPE API could not serve a request.

    Covers transport failures (after retries), error status codes, error
    payloads returned with HTTP 200 and payloads of an unexpected shape.
    """

    def __init__(self, message: str, *, endpoint: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code
