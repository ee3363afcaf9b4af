"""Storage module - provides interface and implementations for data persistence."""

from .interface import StorageInterface
from .local_storage import LocalStorage
from .record_store import PersistedRecordStore

__all__ = ['StorageInterface', 'LocalStorage', 'PersistedRecordStore']
