"""Errors raised by the chat client.

Decode failures and per-tool failures are not represented here: a
malformed chunk is logged and skipped, and a failing tool is reported
back to the model as a JSON error payload.
"""

from __future__ import annotations


class ProxiiError(Exception):
    """Base class for all proxii errors."""


class MissingAPIKeyError(ProxiiError):
    """No API key is configured. Raised before any network call."""

    def __init__(
        self,
        message: str = (
            "No API key found. Please set your OpenRouter API key in settings."
        ),
    ):
        super().__init__(message)


class APIRequestError(ProxiiError):
    """The gateway answered with a non-2xx status.

    Args:
        message: The ``error.message`` from the response body, or a
            generic ``API request failed: {status}`` string.
        status_code: HTTP status of the response.
        error_type: ``error.type`` from the response body, if any.
        code: ``error.code`` from the response body, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        error_type: str | None = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.code = code


class StreamReadError(ProxiiError):
    """The response body could not be read to the end."""


class InvalidTransitionError(ProxiiError):
    """A stream accumulator was asked to make an illegal state change."""
