"""Exceptions raised while loading time-log data."""

from __future__ import annotations


class TimeLogProviderError(Exception):
    """Base class for every error this package raises."""


class ConfigurationError(TimeLogProviderError):
    """Server URL or credentials are not configured."""


class ServerConnectionError(TimeLogProviderError):
    """The work-tracking server could not be reached."""


class AuthenticationError(ServerConnectionError):
    """The server rejected the supplied credentials."""


class QueryExecutionError(TimeLogProviderError):
    """A WIQL query or batch fetch was rejected by the server."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DataConversionError(TimeLogProviderError):
    """A raw work item could not be converted into a record."""

    def __init__(self, message: str, work_item_id: int | None = None, field: str | None = None) -> None:
        super().__init__(message)
        self.work_item_id = work_item_id
        self.field = field
