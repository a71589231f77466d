"""Hardware State Manager (HSM) REST API client package.

Provides a lightweight HTTP client for the CSM HSM API that returns
validated API response types with minimal processing. Normalization and
allocation logic are handled by the engine modules.

Exports:
    HsmRestApiClient: HTTP client with authentication and error handling.
    types: Module containing Pydantic models for API responses.
    DEFAULT_API_PREFIX: Default HSM service path prefix.
    DEFAULT_TIMEOUT: Default HTTP request timeout.
"""

from . import types
from .client import (
    DEFAULT_API_PREFIX,
    DEFAULT_TIMEOUT,
    ExpiredTokenError,
    HsmApiError,
    HsmRestApiClient,
)

__all__ = [
    "DEFAULT_API_PREFIX",
    "DEFAULT_TIMEOUT",
    "ExpiredTokenError",
    "HsmApiError",
    "HsmRestApiClient",
    "types",
]
