"""
Services package for the WezTerm host manager.
"""

from .config_service import ConfigService
from .supervisor_service import ProcessSupervisor, ProcessHandle, ServiceState
from .boot_script import BootScript
from .installer_service import InstallerService

__all__ = [
    'ConfigService',
    'ProcessSupervisor',
    'ProcessHandle',
    'ServiceState',
    'BootScript',
    'InstallerService'
]
