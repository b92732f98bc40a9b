"""odsync - OneDrive synchronization core: delta enumeration, local reconciliation and transfers."""

__version__ = '0.1.0'
__author__ = 'Marlo Bell'
__license__ = 'MIT'

from .backends import SqliteSyncRepository, SyncRepository
from .cancellation import CancellationToken
from .config import Config, SyncSettings
from .exceptions import (
    DeltaProcessingError, MissingDeltaTokenError, RepositoryError, SyncCancelledError, SyncError,
)
from .local_files import LocalFileSystem
from .onedrive_client import OneDriveClient
from .progress import ProgressBroadcaster, SyncProgress, SyncStats, SyncStatus
from .services import DeltaPageProcessor, LocalFileScanner, SyncEngine, TransferService

__all__ = [
    'CancellationToken',
    'Config',
    'DeltaPageProcessor',
    'DeltaProcessingError',
    'LocalFileScanner',
    'LocalFileSystem',
    'MissingDeltaTokenError',
    'OneDriveClient',
    'ProgressBroadcaster',
    'RepositoryError',
    'SqliteSyncRepository',
    'SyncCancelledError',
    'SyncEngine',
    'SyncError',
    'SyncProgress',
    'SyncRepository',
    'SyncSettings',
    'SyncStats',
    'SyncStatus',
    'TransferService',
]
