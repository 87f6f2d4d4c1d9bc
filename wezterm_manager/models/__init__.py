"""
Models package for the WezTerm host manager.
"""

from .config import ServiceConfiguration, ConfigValidationError, ConfigValidationResult, LOG_LEVELS
from .settings import ManagerSettings
from .store import Store, FileStore, MemoryStore

__all__ = [
    'ServiceConfiguration',
    'ConfigValidationError',
    'ConfigValidationResult',
    'LOG_LEVELS',
    'ManagerSettings',
    'Store',
    'FileStore',
    'MemoryStore'
]
