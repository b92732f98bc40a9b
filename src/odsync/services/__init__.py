"""Sync services: delta enumeration, local scanning, transfers and orchestration."""

from .delta_page_processor import DeltaPageProcessor, DeltaResult
from .local_file_scanner import LocalFileScanner, ScanResult
from .sync_engine import SyncEngine
from .transfer_service import TransferResult, TransferService

__all__ = [
    'DeltaPageProcessor',
    'DeltaResult',
    'LocalFileScanner',
    'ScanResult',
    'SyncEngine',
    'TransferResult',
    'TransferService',
]
