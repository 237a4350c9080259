"""FAT12, FAT16 and FAT32 file system engine working on 512-byte sectors.

See https://en.wikipedia.org/wiki/Design_of_the_FAT_file_system.
See https://www.cs.fsu.edu/~cop4610t/assignments/project3/spec/fatspec.pdf.
"""

from .base import FatType
from .directory import Attributes, DirectoryObject, FileInfo
from .file import AccessMode, FileObject
from .filesystem import VOLUME_STRINGS, VolumeTable
from .volume import FatVolume

__all__ = [
    'FatType',
    'Attributes',
    'DirectoryObject',
    'FileInfo',
    'AccessMode',
    'FileObject',
    'VOLUME_STRINGS',
    'VolumeTable',
    'FatVolume',
]
