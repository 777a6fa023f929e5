"""Exception hierarchy for the PKCE relay and token lifecycle.

Each exception also carries an ErrorKind tag for callers that log or report
failures by category.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    MISSING_PARAMETER = "missing_parameter"
    PROVIDER_AUTHORIZATION_ERROR = "provider_authorization_error"
    EXCHANGE_FAILED = "exchange_failed"
    RESOURCE_FAILED = "resource_failed"
    UNAUTHORIZED = "unauthorized"
    NETWORK_FAILURE = "network_failure"
    CONFIGURATION = "configuration"


class OAuth2Error(Exception):
    """Base exception for all relay and token lifecycle errors."""

    kind: ErrorKind


class MissingParameterError(OAuth2Error):
    """Raised when a required field is absent from a request."""

    kind = ErrorKind.MISSING_PARAMETER


class ProviderAuthorizationError(OAuth2Error):
    """Raised when the provider redirected back with an error code.

    The relay converts this to a query-string error for the client application;
    the client raises it when it lands with `?error=`.
    """

    kind = ErrorKind.PROVIDER_AUTHORIZATION_ERROR

    def __init__(self, error: str):
        super().__init__(f"Authorization failed: {error}")
        self.error = error


class ProviderResponseError(OAuth2Error):
    """Base for non-success provider responses.

    Keeps the provider's status code and body verbatim for diagnostics.
    """

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ExchangeFailedError(ProviderResponseError):
    """Raised when the token endpoint returned a non-success status."""

    kind = ErrorKind.EXCHANGE_FAILED


class ResourceRequestError(ProviderResponseError):
    """Raised when the protected resource failed with a status other than 401."""

    kind = ErrorKind.RESOURCE_FAILED


class UnauthorizedError(OAuth2Error):
    """Raised when the protected resource answered 401."""

    kind = ErrorKind.UNAUTHORIZED


class NetworkFailureError(OAuth2Error):
    """Raised when the provider could not be reached at all."""

    kind = ErrorKind.NETWORK_FAILURE


class ConfigurationError(OAuth2Error):
    """Raised when required settings are missing at startup."""

    kind = ErrorKind.CONFIGURATION
