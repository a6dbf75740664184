"""HTTP API client for the Silo backend.

A thin asynchronous wrapper around ``requests.Session``: the blocking
request runs in a worker thread, a bearer token is injected before every
request and transport failures are normalized to ``InfrastructureError``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from silo_cache.config.models.api_settings import APISettings
from silo_cache.services.key_value_store.base import StorageBackend
from silo_cache.shared.constants import HTTPStatusCodes, NetworkConfig
from silo_cache.shared.errors import (
    ErrorCode,
    InfrastructureError,
    SiloCacheError,
    create_network_error,
)
from silo_cache.shared.logging import log_api_call
from silo_cache.shared.types import NetworkFetch

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    """Source of the bearer token sent with every request."""

    async def get_token(self) -> str | None: ...


class StorageTokenProvider:
    """Reads the auth token from a storage backend key."""

    def __init__(
        self,
        storage: StorageBackend,
        key: str = NetworkConfig.TOKEN_STORAGE_KEY,
    ) -> None:
        self.storage = storage
        self.key = key

    async def get_token(self) -> str | None:
        try:
            token = await self.storage.get_item(self.key)
        except SiloCacheError:
            logger.warning("Could not read auth token from storage", exc_info=True)
            return None
        return token or None


@dataclass(frozen=True)
class ApiResponse:
    """Decoded HTTP response."""

    data: Any
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)


def _build_session(transport_retries: int, backoff_factor: float) -> requests.Session:
    """Create a session retrying 5xx responses on idempotent methods."""
    session = requests.Session()

    retry_strategy = Retry(
        total=transport_retries,
        status_forcelist=list(NetworkConfig.RETRY_STATUS_CODES),
        backoff_factor=backoff_factor,
        allowed_methods=list(NetworkConfig.RETRY_METHODS),
        raise_on_status=False,  # the last response is mapped to an error code
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)

    session.headers["User-Agent"] = NetworkConfig.USER_AGENT
    session.headers["Accept"] = NetworkConfig.ACCEPT_JSON

    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


def _status_to_error_code(status_code: int) -> ErrorCode:
    if status_code in (HTTPStatusCodes.UNAUTHORIZED, HTTPStatusCodes.FORBIDDEN):
        return ErrorCode.API_AUTHENTICATION_FAILED
    if status_code == HTTPStatusCodes.TOO_MANY_REQUESTS:
        return ErrorCode.API_RATE_LIMIT
    if status_code >= HTTPStatusCodes.SERVER_ERROR:
        return ErrorCode.API_SERVER_ERROR
    return ErrorCode.API_REQUEST_FAILED


class ApiClient:
    """Asynchronous JSON API client.

    Args:
        base_url: Prefix of every request path
        token_provider: Optional bearer token source consulted per request
        timeout: Request timeout in seconds
        transport_retries: urllib3 retries for 500/502/503/504
        backoff_factor: urllib3 backoff factor
        session: Preconfigured session, mainly for tests

    Example:
        >>> client = ApiClient("http://localhost:9000/api")
        >>> response = await client.get("/orders", params={"status": "pending"})
        >>> response.data
        {'orders': [...]}
    """

    def __init__(
        self,
        base_url: str = NetworkConfig.DEFAULT_BASE_URL,
        *,
        token_provider: TokenProvider | None = None,
        timeout: float = NetworkConfig.READ_TIMEOUT,
        transport_retries: int = NetworkConfig.TRANSPORT_RETRIES,
        backoff_factor: float = NetworkConfig.BACKOFF_FACTOR,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self.session = session or _build_session(transport_retries, backoff_factor)

    @classmethod
    def from_settings(
        cls,
        settings: APISettings,
        storage: StorageBackend | None = None,
        *,
        base_url: str | None = None,
    ) -> ApiClient:
        """Build a client from the ``api`` settings section.

        The bearer token is read from ``storage`` when one is given.
        """
        token_provider = (
            StorageTokenProvider(storage, settings.token_storage_key) if storage is not None else None
        )
        return cls(
            base_url or settings.base_url,
            token_provider=token_provider,
            timeout=settings.timeout,
            transport_retries=settings.transport_retries,
            backoff_factor=settings.backoff_factor,
        )

    # ----------------------------------------------------------------- verbs

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> ApiResponse:
        return await self.request("POST", path, params=params, json=json)

    async def put(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> ApiResponse:
        return await self.request("PUT", path, params=params, json=json)

    async def delete(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
    ) -> ApiResponse:
        return await self.request("DELETE", path, params=params)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> ApiResponse:
        """Send a request and decode the JSON response.

        Raises:
            InfrastructureError: API_TIMEOUT, NETWORK_ERROR,
                API_AUTHENTICATION_FAILED, API_RATE_LIMIT, API_SERVER_ERROR,
                API_REQUEST_FAILED or API_INVALID_RESPONSE
        """
        headers: dict[str, str] = {}
        if self.token_provider is not None:
            token = await self.token_provider.get_token()
            if token:
                headers[NetworkConfig.AUTHORIZATION_HEADER] = f"{NetworkConfig.BEARER_PREFIX}{token}"

        return await asyncio.to_thread(self._send, method, path, params, json, headers)

    def _send(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None,
        json: Any,
        headers: dict[str, str],
    ) -> ApiResponse:
        url = self.url_for(path)
        start = time.perf_counter()

        try:
            response = self.session.request(
                method,
                url,
                params=dict(params) if params else None,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise create_network_error(
                f"Request timed out: {method} {path}",
                ErrorCode.API_TIMEOUT,
                endpoint=path,
                operation="api_request",
                original_error=e,
            ) from e
        except requests.RequestException as e:
            raise create_network_error(
                f"Network error: {method} {path}: {e!s}",
                ErrorCode.NETWORK_ERROR,
                endpoint=path,
                operation="api_request",
                original_error=e,
            ) from e

        duration_ms = (time.perf_counter() - start) * 1000
        log_api_call(logger, path, method, response.status_code, duration_ms)

        if response.status_code >= HTTPStatusCodes.BAD_REQUEST:
            raise create_network_error(
                f"{method} {path} failed with status {response.status_code}",
                _status_to_error_code(response.status_code),
                endpoint=path,
                status_code=response.status_code,
                operation="api_request",
            )

        return ApiResponse(
            data=self._decode(response, method, path),
            status_code=response.status_code,
            headers=dict(response.headers),
        )

    @staticmethod
    def _decode(response: requests.Response, method: str, path: str) -> Any:
        if response.status_code == HTTPStatusCodes.NO_CONTENT or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise create_network_error(
                f"{method} {path} returned a body that is not JSON",
                ErrorCode.API_INVALID_RESPONSE,
                endpoint=path,
                status_code=response.status_code,
                operation="api_request",
                original_error=e,
            ) from e

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    # --------------------------------------------------------------- fetchers

    def fetcher(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        data_key: str | None = None,
        default: Any = None,
    ) -> NetworkFetch:
        """Build a ``network_fetch`` callable for the revalidating fetcher.

        Args:
            path: Request path
            params: Query parameters
            data_key: Extract ``body[data_key]`` instead of the whole body
            default: Returned when the body (or the extracted field) is missing
        """

        async def network_fetch() -> Any:
            response = await self.get(path, params=params)
            body = response.data
            if data_key is None:
                return default if body is None else body
            if body is None:
                return default
            if not isinstance(body, dict):
                raise InfrastructureError(
                    ErrorCode.API_INVALID_RESPONSE,
                    f"Expected a JSON object from {path} to extract '{data_key}'",
                )
            return body.get(data_key, default)

        return network_fetch

    # -------------------------------------------------------------- lifecycle

    def close(self) -> None:
        self.session.close()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
