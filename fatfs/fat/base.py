"""Classes and constants used across the ``fat`` package."""

from __future__ import annotations

from enum import Enum

__all__ = [
    'FatType',
    'MAX_FAT12',
    'MAX_FAT16',
    'MAX_FAT32',
    'MAX_DIR',
    'INVALID_SECTOR',
    'CLUSTER_EOC',
]


MAX_FAT12 = 0xFF5  # max number of clusters of a FAT12 volume
MAX_FAT16 = 0xFFF5
MAX_FAT32 = 0x0FFFFFF5
MAX_DIR = 0x200000  # max size of a directory table in bytes

# Sector number never cached by a window
INVALID_SECTOR = 0xFFFFFFFF

# Written as a FAT value, this is reduced to the end-of-chain marker of every FAT type
CLUSTER_EOC = 0xFFFFFFFF


class FatType(Enum):
    """FAT file system type."""

    FAT_12 = 12
    FAT_16 = 16
    FAT_32 = 32

    @classmethod
    def from_cluster_count(cls, clusters: int) -> FatType:
        """Return the ``FatType`` of a volume with ``clusters`` data clusters.

        If there are more clusters than FAT32 can address, ``ValueError`` is raised.
        """
        if clusters <= MAX_FAT12:
            return cls.FAT_12
        if clusters <= MAX_FAT16:
            return cls.FAT_16
        if clusters <= MAX_FAT32:
            return cls.FAT_32
        raise ValueError(f'Too many clusters for a FAT volume ({clusters})')

    @property
    def mask(self) -> int:
        """Bit mask of the significant bits of a FAT entry."""
        return {12: 0xFFF, 16: 0xFFFF, 32: 0x0FFFFFFF}[self.value]

    def __str__(self) -> str:
        return f'FAT{self.value}'
