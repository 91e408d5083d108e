"""
Remote storage backends behind one adapter interface.
"""

from hubsync.providers.base import ProviderAdapter, Quota, RemoteEntry, WriteMode, join_path, normalize_path
from hubsync.providers.dropbox import DropboxProvider
from hubsync.providers.memory import MemoryProvider
from hubsync.providers.registry import create_provider
from hubsync.providers.supabase import SupabaseProvider
from hubsync.providers.webdav import WebDAVProvider

__all__ = [
    "ProviderAdapter",
    "Quota",
    "RemoteEntry",
    "WriteMode",
    "join_path",
    "normalize_path",
    "create_provider",
    "DropboxProvider",
    "MemoryProvider",
    "SupabaseProvider",
    "WebDAVProvider",
]
