"""State storage backends for odsync."""

from .base import SyncRepository
from .sqlite_backend import SqliteSyncRepository

__all__ = ['SyncRepository', 'SqliteSyncRepository']
