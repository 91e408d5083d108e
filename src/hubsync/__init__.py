"""
hubsync - Snapshot sync and a shared multi-writer inbox for offline-first
installations, over Dropbox, WebDAV or Supabase.
"""

__version__ = "0.1.0"

# Configuration
from hubsync.config.loader import Config, load_config
from hubsync.config.sync_config import CredentialStore, ProviderKind, SyncConfiguration

# Exceptions
from hubsync.exceptions import (
    AuthError,
    ConfigurationError,
    DataFormatError,
    HubSyncError,
    ParseError,
    RemoteNotFoundError,
    StateStoreError,
    TransportError,
    VersionMismatchError,
    user_message,
)

# Providers
from hubsync.providers import MemoryProvider, ProviderAdapter, WriteMode, create_provider

# Local store
from hubsync.store import LocalStore, SyncHistoryLedger

# Sync
from hubsync.sync import InboxMerger, InboxQueue, ParsedRecord, SnapshotSync, SyncEngine

# Logging utilities
from hubsync.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    "__version__",
    # Configuration
    "Config",
    "load_config",
    "CredentialStore",
    "ProviderKind",
    "SyncConfiguration",
    # Exceptions
    "HubSyncError",
    "ConfigurationError",
    "AuthError",
    "RemoteNotFoundError",
    "TransportError",
    "DataFormatError",
    "VersionMismatchError",
    "ParseError",
    "StateStoreError",
    "user_message",
    # Providers
    "ProviderAdapter",
    "WriteMode",
    "MemoryProvider",
    "create_provider",
    # Local store
    "LocalStore",
    "SyncHistoryLedger",
    # Sync
    "SyncEngine",
    "SnapshotSync",
    "InboxQueue",
    "InboxMerger",
    "ParsedRecord",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
]
