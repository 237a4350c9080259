"""Sector window shared by all FAT and directory accesses of a volume."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..base import FileResult
from ..device import SECTOR_SIZE, DiskResult
from .base import INVALID_SECTOR

if TYPE_CHECKING:
    from ..device import BlockDevice

__all__ = ['SectorWindow']


log = logging.getLogger(__name__)


class SectorWindow:
    """Single-sector write-back cache of a volume.

    Every access to the FAT region and to directory tables goes through the window,
    so it always holds exactly one sector. A dirty window is written back before it
    is moved to another sector. If the dirty sector is part of the first FAT and the
    volume has two FATs, the write is mirrored to the second FAT.
    """

    def __init__(self, device: BlockDevice, drive: int = 0):
        self.device = device
        self.drive = drive
        self.buffer = bytearray(SECTOR_SIZE)
        self.sector = INVALID_SECTOR
        self.dirty = False

        # Location of the first FAT, configured when the volume is mounted
        self.fat_start = 0
        self.fat_size = 0
        self.fat_count = 1

    def configure_mirror(self, fat_start: int, fat_size: int, fat_count: int) -> None:
        """Set up where the FAT region of the volume is located."""
        self.fat_start = fat_start
        self.fat_size = fat_size
        self.fat_count = fat_count

    def invalidate(self) -> None:
        """Forget the cached sector without writing it back."""
        self.dirty = False
        self.sector = INVALID_SECTOR

    def sync(self) -> FileResult:
        """Write the window back to the device if it is dirty."""
        if not self.dirty:
            return FileResult.OK

        sector = self.sector
        if self.device.write(self.drive, self.buffer, sector, 1) is not DiskResult.OK:
            log.debug(f'Failed to write back sector {sector}')
            return FileResult.DISK_ERROR

        if 0 <= sector - self.fat_start < self.fat_size and self.fat_count == 2:
            # Second FAT directly follows the first one; its write result is ignored
            self.device.write(self.drive, self.buffer, sector + self.fat_size, 1)
        self.dirty = False
        return FileResult.OK

    def move(self, sector: int) -> FileResult:
        """Make ``sector`` the cached sector, writing back the current one first."""
        if sector == self.sector:
            return FileResult.OK

        result = self.sync()
        if result is not FileResult.OK:
            return result

        if self.device.read(self.drive, self.buffer, sector, 1) is not DiskResult.OK:
            log.debug(f'Failed to read sector {sector}')
            self.sector = INVALID_SECTOR
            return FileResult.DISK_ERROR
        self.sector = sector
        return FileResult.OK

    def clear(self, sector: int) -> None:
        """Zero-fill the buffer and retarget it at ``sector`` without any I/O.

        The window has to be synced before, otherwise pending changes are lost.
        """
        self.buffer[:] = bytes(SECTOR_SIZE)
        self.sector = sector

    def mark_dirty(self) -> None:
        self.dirty = True

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(sector={self.sector:#x}, dirty={self.dirty})'
        )
