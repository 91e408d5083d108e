"""
Provider selection from the per-installation sync configuration.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from hubsync.config.sync_config import ProviderKind, SyncConfiguration
from hubsync.exceptions import ConfigurationError
from hubsync.providers.base import ProviderAdapter
from hubsync.providers.dropbox import DropboxProvider
from hubsync.providers.supabase import SupabaseProvider
from hubsync.providers.webdav import WebDAVProvider
from hubsync.utils.http import HttpClient


def create_provider(
    config: SyncConfiguration,
    token_source: Callable[[], Awaitable[str]] | None = None,
    http: HttpClient | None = None,
) -> ProviderAdapter:
    """
    Build the adapter for ``config.provider``.

    Args:
        config: Sync configuration
        token_source: Bearer token source, required for the delegated object store
        http: Shared HTTP client

    Raises:
        ConfigurationError: Provider is ``none`` or its credentials are incomplete
    """
    kind = config.provider

    if kind is ProviderKind.OBJECT_STORE:
        if not config.app_key or not config.refresh_token:
            raise ConfigurationError("Dropbox is selected but not connected; run the authorization flow first")
        if token_source is None:
            raise ConfigurationError("Dropbox provider needs a token source")
        return DropboxProvider(token_source, http=http)

    if kind is ProviderKind.FILE_PROTOCOL:
        if not config.base_url or not config.username or not config.password:
            raise ConfigurationError("WebDAV is selected but URL, username or password is missing")
        return WebDAVProvider(config.base_url, config.username, config.password, http=http)

    if kind is ProviderKind.HOSTED_RELATIONAL:
        if not config.api_url or not config.api_key:
            raise ConfigurationError("Supabase is selected but URL or API key is missing")
        return SupabaseProvider(
            config.api_url,
            config.api_key,
            bucket=config.bucket,
            inbox_table=config.inbox_table,
            http=http,
        )

    raise ConfigurationError("No sync provider is configured")
