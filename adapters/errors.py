from __future__ import annotations

import re
from typing import Iterable, Optional


class AdapterError(RuntimeError):
    """Base class for every error an adapter is allowed to surface."""

    default_message = "Database error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class ValidationError(AdapterError, ValueError):
    default_message = "Invalid request"


class EmptyPayloadError(ValidationError):
    default_message = "No fields to update"


class ConfigurationError(ValidationError):
    default_message = "Invalid connection configuration"


class AuthenticationError(AdapterError):
    default_message = "Authentication failed"


class AuthorizationError(AdapterError):
    default_message = "Forbidden"


class NotFoundError(AdapterError):
    default_message = "Record not found"


class EndpointNotFoundError(NotFoundError):
    default_message = "Endpoint not found"


class TransientUnavailableError(AdapterError):
    default_message = "Database temporarily unavailable"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[str] = None,
        retry_after: int = 2,
    ):
        super().__init__(message, details)
        self.retry_after = retry_after


class EngineQueryError(AdapterError):
    default_message = "Query error"


_URI_CREDENTIALS = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/\s:@]+:[^/\s@]+@")
_KEY_VALUE_SECRET = re.compile(r"(?i)\b(password|passwd|pwd|secret|token)=\S+")


def redact(message: str, secrets: Iterable[Optional[str]] = ()) -> str:
    cleaned = str(message)
    for secret in secrets:
        if secret and len(str(secret)) >= 3:
            cleaned = cleaned.replace(str(secret), "***")
    cleaned = _URI_CREDENTIALS.sub(lambda m: f"{m.group('scheme')}***@", cleaned)
    cleaned = _KEY_VALUE_SECRET.sub(lambda m: f"{m.group(1)}=***", cleaned)
    return cleaned
