"""Hardware State Manager (HSM) REST API client.

Provides HTTP client with bearer token authentication, thread safety,
and automatic response validation using Pydantic models. Implements the
:class:`hsm_hw_allocator.backend.HsmBackend` capabilities for CSM.
"""

import base64
import json
import threading
import time
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import httpx
import structlog

from ..errors import BackendError, GroupNotFoundError
from .types import Group, RawHardwareInventory

logger = structlog.get_logger(__name__)

DEFAULT_API_PREFIX = "/smd/hsm/v2"

DEFAULT_TIMEOUT = 30.0


class ExpiredTokenError(Exception):
    """Raised when the API JWT has expired."""


class HsmApiError(BackendError):
    """Raised when an HSM API call fails."""


def validate_jwt_not_expired(token: str) -> None:
    """Check that a JWT token has not expired.

    Decodes the JWT payload without verifying the signature and checks
    the ``exp`` claim against the current time. Raises
    :class:`ExpiredTokenError` if the token is already past its
    expiration. If the token is not a valid JWT or has no ``exp`` claim,
    a warning is logged and execution continues.

    Args:
        token: The raw JWT string (header.payload.signature).

    Raises:
        ExpiredTokenError: If the token's ``exp`` claim is in the past.
    """
    parts = token.split(".")
    if len(parts) != 3:  # noqa: PLR2004
        logger.warning("Token does not appear to be a JWT, skipping expiry check")
        return

    try:
        # JWT base64url encoding omits padding; restore it
        payload_b64 = parts[1]
        padding = 4 - len(payload_b64) % 4
        if padding != 4:  # noqa: PLR2004
            payload_b64 += "=" * padding

        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
    except (ValueError, json.JSONDecodeError):
        logger.warning("Failed to decode JWT payload, skipping expiry check")
        return

    exp = payload.get("exp") if isinstance(payload, dict) else None
    if exp is None:
        logger.warning("JWT has no 'exp' claim, skipping expiry check")
        return

    now = time.time()
    if now >= exp:
        msg = f"API JWT has expired (exp={exp}, now={int(now)})"
        raise ExpiredTokenError(msg)

    logger.info("JWT expiry validated", expires_in_seconds=int(exp - now))


class HsmRestApiClient:
    """HTTP client for the CSM Hardware State Manager API.

    Handles authentication, makes HTTP requests, validates responses and
    returns Pydantic-validated objects. Allocation logic lives in the
    engine modules, never here.

    Thread-safe through thread-local storage of httpx.Client instances,
    which lets the inventory fetcher share one client across its worker
    pool. Can be used as a context manager for automatic cleanup.
    """

    def __init__(
        self,
        base_url: str,
        token_file: str | Path | None = None,
        api_prefix: str = DEFAULT_API_PREFIX,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the REST API client.

        Args:
            base_url: Base URL of the control plane API gateway
                (e.g., "https://api.cmn.example.com/apis").
            token_file: Path to file containing the bearer token.
            api_prefix: Path prefix of the HSM service (default: /smd/hsm/v2).
            timeout: Request timeout in seconds (default: 30.0).
            transport: Optional httpx transport, mainly for tests.

        Raises:
            ValueError: If base_url is empty or timeout is not positive.
            FileNotFoundError: If token_file is specified but doesn't exist.
        """
        if not base_url:
            msg = "base_url cannot be empty"
            raise ValueError(msg)
        if timeout <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)

        self.base_url = base_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/")
        self._timeout = timeout
        self._transport = transport

        self._headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        if token_file:
            token_path = Path(token_file)
            if not token_path.exists():
                msg = f"Token file not found: {token_file}"
                raise FileNotFoundError(msg)
            token = token_path.read_text().strip()
            validate_jwt_not_expired(token)
            self._headers["Authorization"] = f"Bearer {token}"

        self._local = threading.local()

    @property
    def client(self) -> httpx.Client:
        """Get or create thread-local httpx client.

        Returns:
            Thread-local httpx.Client instance.
        """
        if not hasattr(self._local, "client") or self._local.client.is_closed:
            self._local.client = httpx.Client(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._local.client

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager and cleanup resources."""
        self.close()

    def close(self):
        """Close the thread-local HTTP client if open."""
        if hasattr(self._local, "client") and not self._local.client.is_closed:
            self._local.client.close()

    def _make_request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        """Make HTTP request to the HSM API.

        Handles request execution, error checking, and JSON parsing.
        Logs request details and duration.

        Args:
            method: HTTP method.
            path: Path relative to the HSM prefix (e.g., "/groups/tasna").
            params: Optional query parameters.
            payload: Optional JSON body.

        Returns:
            Parsed JSON response, or None for empty bodies.

        Raises:
            httpx.HTTPStatusError: If the API answers with an error status.
            HsmApiError: If the request cannot be completed or the body
                is not JSON.
        """
        endpoint = f"{self.api_prefix}{path}"
        start_time = time.time()

        logger.debug(
            "Making API request",
            method=method,
            endpoint=endpoint,
            params=dict(params or {}),
        )
        try:
            response = self.client.request(
                method,
                endpoint,
                params=dict(params or {}),
                json=payload,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError:
            logger.warning(
                "API request rejected",
                method=method,
                endpoint=endpoint,
                duration_seconds=round(time.time() - start_time, 3),
            )
            raise
        except httpx.HTTPError as exc:
            logger.exception(
                "API request failed",
                method=method,
                endpoint=endpoint,
                duration_seconds=round(time.time() - start_time, 3),
            )
            msg = f"{method} {endpoint} failed: {exc}"
            raise HsmApiError(msg) from exc

        logger.debug(
            "API request completed",
            duration_seconds=round(time.time() - start_time, 3),
        )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            msg = f"{method} {endpoint} returned a non JSON body"
            raise HsmApiError(msg) from exc

    def _call(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        """Make a request, turning HTTP status errors into HsmApiError."""
        try:
            return self._make_request(method, path, params=params, payload=payload)
        except httpx.HTTPStatusError as exc:
            msg = (
                f"{method} {self.api_prefix}{path} returned "
                f"{exc.response.status_code}: {exc.response.text}"
            )
            raise HsmApiError(msg) from exc

    def get_hardware(
        self,
        node_id: str,
        filters: Mapping[str, str] | None = None,
    ) -> RawHardwareInventory:
        """Fetch the hardware inventory of one node.

        Args:
            node_id: Node xname.
            filters: Query parameters passed through untouched (type,
                children, parents, partition, format).

        Returns:
            Validated RawHardwareInventory.

        Raises:
            HsmApiError: If the HTTP request fails.
            pydantic.ValidationError: If the document has no node entry.
        """
        data = self._call(
            "GET",
            f"/Inventory/Hardware/Query/{node_id}",
            params=filters,
        )
        return RawHardwareInventory.model_validate(data)

    def get_group(self, name: str) -> Group:
        """Fetch a group.

        Raises:
            GroupNotFoundError: If the group does not exist.
            HsmApiError: If the HTTP request fails for another reason.
        """
        try:
            data = self._make_request("GET", f"/groups/{name}")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == httpx.codes.NOT_FOUND:
                raise GroupNotFoundError(name) from exc
            msg = f"Fetching group '{name}' returned {exc.response.status_code}"
            raise HsmApiError(msg) from exc
        return Group.model_validate(data)

    def create_group(self, label: str, members: Iterable[str] = ()) -> Group:
        """Create a non exclusive group with the given members."""
        member_ids = list(members)
        self._call(
            "POST",
            "/groups",
            payload={
                "label": label,
                "description": "",
                "tags": [],
                "members": {"ids": member_ids},
            },
        )
        logger.info("Created group", group=label, members=len(member_ids))
        return Group(label=label, members=member_ids)

    def delete_group(self, name: str) -> None:
        """Delete a group."""
        self._call("DELETE", f"/groups/{name}")
        logger.info("Deleted group", group=name)

    def add_members(self, group: str, node_ids: Iterable[str]) -> None:
        """Add nodes to a group, one API call per node."""
        for node_id in node_ids:
            self._call("POST", f"/groups/{group}/members", payload={"id": node_id})
            logger.debug("Added group member", group=group, node=node_id)

    def remove_member(self, group: str, node_id: str) -> None:
        """Remove a node from a group."""
        self._call("DELETE", f"/groups/{group}/members/{node_id}")
        logger.debug("Removed group member", group=group, node=node_id)

    def members_of(self, group_names: Iterable[str]) -> list[str]:
        """Return the sorted union of the members of the given groups."""
        members: set[str] = set()
        for name in group_names:
            members.update(self.get_group(name).members)
        return sorted(members)
