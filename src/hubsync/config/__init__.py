"""
Configuration management.

Project configuration (hubsync.yaml), per-installation sync credentials and
pairing codes.
"""

from hubsync.config.loader import Config, load_config
from hubsync.config.pairing import export_pairing_code, import_pairing_code
from hubsync.config.resolver import resolve_config
from hubsync.config.sync_config import CredentialStore, ProviderKind, SyncConfiguration

__all__ = [
    "load_config",
    "Config",
    "resolve_config",
    "CredentialStore",
    "ProviderKind",
    "SyncConfiguration",
    "export_pairing_code",
    "import_pairing_code",
]
