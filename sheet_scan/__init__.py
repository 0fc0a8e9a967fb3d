"""
SheetScan - Exam answer sheet scanning pipeline
"""

from .config import ScanSettings, load_settings
from .services import ScanService, ScanError

__all__ = ['ScanSettings', 'load_settings', 'ScanService', 'ScanError']
__version__ = '0.9.0'
