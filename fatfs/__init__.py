"""FAT file system access on top of abstract block devices.

The engine in ``fatfs.fat`` reports results as ``FileResult`` values, while
``FatFileSystem`` wraps it with exceptions and Python file objects.
"""

from .base import FatError, FileResult, FileSystemLimit
from .device import BlockDevice, ImageDevice, MemoryDevice
from .filesystem import FatFileSystem, FileAttributes, FileIO, FileMode

__all__ = [
    'FatError',
    'FileResult',
    'FileSystemLimit',
    'BlockDevice',
    'ImageDevice',
    'MemoryDevice',
    'FatFileSystem',
    'FileAttributes',
    'FileIO',
    'FileMode',
]
