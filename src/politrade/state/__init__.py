"""Blocked-asset store interfaces and implementations."""

from .sqlite_store import SqliteBlockedAssetStore
from .store import BlockedAsset, BlockedAssetStore, InMemoryBlockedAssetStore

__all__ = [
    "BlockedAsset",
    "BlockedAssetStore",
    "InMemoryBlockedAssetStore",
    "SqliteBlockedAssetStore",
]
