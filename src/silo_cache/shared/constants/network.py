"""
Network Configuration Constants

This module contains all constants related to the HTTP API client,
its retry policy and bearer-token injection.
"""

from .system import BASE_SECOND


class NetworkConfig:
    """Network configuration constants."""

    DEFAULT_BASE_URL = "http://localhost:9000/api"

    # Timeout settings
    READ_TIMEOUT = 30 * BASE_SECOND

    # Transport retry settings (urllib3 Retry)
    TRANSPORT_RETRIES = 3
    BACKOFF_FACTOR = 1.0
    RETRY_STATUS_CODES = (500, 502, 503, 504)
    RETRY_METHODS = ("HEAD", "GET", "OPTIONS", "PUT", "DELETE")

    # Headers
    USER_AGENT = "silo-cache/0.1.0"
    ACCEPT_JSON = "application/json"
    AUTHORIZATION_HEADER = "Authorization"
    BEARER_PREFIX = "Bearer "

    # Storage key holding the auth token
    TOKEN_STORAGE_KEY = "token"


class HTTPStatusCodes:
    """HTTP status codes the client maps to error codes."""

    UNAUTHORIZED = 401
    FORBIDDEN = 403
    TOO_MANY_REQUESTS = 429
    BAD_REQUEST = 400
    SERVER_ERROR = 500
    NO_CONTENT = 204
