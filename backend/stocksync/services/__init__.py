# Overview: Sync core services; one module per component.

from .sync_core import ConnectivityStatus, SyncCore, build_sync_core

__all__ = [
    "ConnectivityStatus",
    "SyncCore",
    "build_sync_core",
]
