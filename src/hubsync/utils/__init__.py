"""
Shared utilities: logging and the HTTP client.
"""

from hubsync.utils.http import HttpClient, HttpResponse
from hubsync.utils.logging import SecretFilter, get_logger, redact, setup_logging, setup_logging_from_config

__all__ = [
    "HttpClient",
    "HttpResponse",
    "SecretFilter",
    "get_logger",
    "redact",
    "setup_logging",
    "setup_logging_from_config",
]
