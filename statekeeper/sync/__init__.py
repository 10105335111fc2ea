"""Synchronization of the local state file with its remote copy."""

from .controller import SyncController, SyncResult, SyncStatus

__all__ = ["SyncController", "SyncResult", "SyncStatus"]
