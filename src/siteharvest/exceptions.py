"""Custom exceptions for siteharvest with context support."""

import uuid
from typing import Any


def generate_correlation_id() -> str:
    """
    Generate an 8-character UUID-based correlation ID.

    Returns:
        8-character correlation ID string.
    """
    return str(uuid.uuid4())[:8]


class SiteHarvestError(Exception):
    """Base exception for siteharvest with context and correlation ID support."""

    def __init__(
        self,
        message: str,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialise exception with message, correlation ID, and context.

        Args:
            message: Error message.
            correlation_id: Optional correlation ID. If None, generates a new one.
            context: Optional context dictionary for debugging.
        """
        self.message = message
        self.correlation_id = correlation_id or generate_correlation_id()
        self.context = context or {}
        super().__init__(f"{message} [correlation_id={self.correlation_id}]")


class ValidationError(SiteHarvestError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialise validation error with field and value context.

        Args:
            message: Error message.
            field: Optional field name that failed validation.
            value: Optional value that failed validation.
            correlation_id: Optional correlation ID. If None, generates a new one.
            context: Optional context dictionary for debugging.
        """
        if context is None:
            context = {}
        if field is not None:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)
        super().__init__(message, correlation_id=correlation_id, context=context)


class InvalidUrlError(ValidationError):
    """Raised when a root URL cannot be parsed or canonicalized."""

    def __init__(self, message: str, url: str | None = None, correlation_id: str | None = None) -> None:
        super().__init__(message, field="url", value=url, correlation_id=correlation_id)


class UnsafeUrlError(ValidationError):
    """Raised when a URL points at a loopback, private or link-local host."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        host: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        """
        Initialise unsafe URL error with the offending host.

        Args:
            message: Error message.
            url: URL that was rejected.
            host: Host that failed the guard.
            correlation_id: Optional correlation ID. If None, generates a new one.
        """
        context: dict[str, Any] = {}
        if host is not None:
            context["host"] = host
        super().__init__(message, field="url", value=url, correlation_id=correlation_id, context=context)


class ConfigurationError(SiteHarvestError):
    """Raised when configuration loading or validation fails."""

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialise configuration error with setting context.

        Args:
            message: Error message.
            setting: Optional name of the offending setting.
            correlation_id: Optional correlation ID. If None, generates a new one.
            context: Optional context dictionary for debugging.
        """
        if context is None:
            context = {}
        if setting is not None:
            context["setting"] = setting
        super().__init__(message, correlation_id=correlation_id, context=context)


class FetchError(SiteHarvestError):
    """Raised when a document cannot be retrieved.

    ``transient`` marks failures worth retrying (timeouts, connection resets,
    5xx, 408, 429). Permanent rejections (404, 403, other 4xx, redirect loops)
    carry ``transient=False``.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        transient: bool = False,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialise fetch error with URL and status context.

        Args:
            message: Error message.
            url: URL that failed.
            status_code: HTTP status code, when a response was received.
            transient: Whether retrying could succeed.
            correlation_id: Optional correlation ID. If None, generates a new one.
            context: Optional context dictionary for debugging.
        """
        if context is None:
            context = {}
        if url is not None:
            context["url"] = url
        if status_code is not None:
            context["status_code"] = status_code
        self.url = url
        self.status_code = status_code
        self.transient = transient
        super().__init__(message, correlation_id=correlation_id, context=context)
