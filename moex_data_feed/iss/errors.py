from __future__ import annotations


class IssError(Exception):
    """Base error for MOEX ISS queries."""


class UrlBuildError(IssError, ValueError):
    """Request URL could not be built from the given inputs."""


class FetchError(IssError):
    """Transport-level failure while calling the ISS API."""


class DecodeError(IssError):
    """ISS response does not match the expected shape or a value does not parse."""
