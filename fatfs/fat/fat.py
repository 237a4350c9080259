"""File allocation table."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..base import FileResult
from ..device import SECTOR_SIZE
from .base import FatType

if TYPE_CHECKING:
    from .volume import FatVolume

__all__ = ['FatTable', 'CLUSTER_EMPTY']


CLUSTER_EMPTY = 0
FAT32_RESERVED_BITS = 0xF0000000


class FatTable:
    """Access to the entries of the FAT of a mounted volume.

    All reads and writes go through the sector window of the volume, so changes
    become persistent once the window is synced. Writes to the first FAT are
    mirrored to the second FAT (if present) by the window.

    Errors are returned, not raised: ``get()`` returns either the entry value or a
    ``FileResult``.
    """

    def __init__(self, volume: FatVolume):
        self._volume = volume

    def _check_cluster(self, cluster: int) -> bool:
        return 2 <= cluster < self._volume.n_fatent

    def _get_io_info(self, cluster: int) -> tuple[int, int]:
        """Return a ``tuple`` of ``(sector, bytes_offset_sector)`` of the FAT entry
        of ``cluster``.

        For FAT12, this is the location of the first of the two bytes the entry
        spans.
        """
        fat_type = self._volume.fs_type
        if fat_type is FatType.FAT_12:
            bytes_offset = cluster + cluster // 2
        elif fat_type is FatType.FAT_16:
            bytes_offset = cluster * 2
        else:
            bytes_offset = cluster * 4

        sector = self._volume.fatbase + bytes_offset // SECTOR_SIZE
        return sector, bytes_offset % SECTOR_SIZE

    def _load_byte(self, sector: int, offset: int) -> int | FileResult:
        window = self._volume.window
        result = window.move(sector)
        if result is not FileResult.OK:
            return FileResult.DISK_ERROR
        return window.buffer[offset]

    def get(self, cluster: int) -> int | FileResult:
        """Read the FAT entry of ``cluster``.

        Returns ``FileResult.INTERNAL_ERROR`` if ``cluster`` is out of range and
        ``FileResult.DISK_ERROR`` if the FAT cannot be read.
        """
        if not self._check_cluster(cluster):
            return FileResult.INTERNAL_ERROR

        fat_type = self._volume.fs_type
        sector, offset = self._get_io_info(cluster)

        if fat_type is FatType.FAT_12:
            # The entry might span a sector boundary, so load both bytes separately
            low = self._load_byte(sector, offset)
            if isinstance(low, FileResult):
                return low
            sector, offset = divmod(
                (sector - self._volume.fatbase) * SECTOR_SIZE + offset + 1,
                SECTOR_SIZE,
            )
            high = self._load_byte(self._volume.fatbase + sector, offset)
            if isinstance(high, FileResult):
                return high

            value = low | high << 8
            if cluster & 1:
                return value >> 4
            return value & 0xFFF

        window = self._volume.window
        if window.move(sector) is not FileResult.OK:
            return FileResult.DISK_ERROR

        if fat_type is FatType.FAT_16:
            return int.from_bytes(window.buffer[offset : offset + 2], 'little')
        value = int.from_bytes(window.buffer[offset : offset + 4], 'little')
        return value & FatType.FAT_32.mask

    def put(self, cluster: int, value: int) -> FileResult:
        """Write ``value`` to the FAT entry of ``cluster``.

        ``value`` is reduced to the width of the FAT type. For FAT32, the reserved
        upper 4 bits of the existing entry are preserved.
        """
        if not self._check_cluster(cluster):
            return FileResult.INTERNAL_ERROR

        fat_type = self._volume.fs_type
        window = self._volume.window
        sector, offset = self._get_io_info(cluster)

        result = window.move(sector)
        if result is not FileResult.OK:
            return result

        if fat_type is FatType.FAT_12:
            first = window.buffer[offset]
            if cluster & 1:
                window.buffer[offset] = (first & 0x0F) | (value << 4) & 0xF0
            else:
                window.buffer[offset] = value & 0xFF
            window.mark_dirty()

            # Second byte, possibly located in the next sector
            sector, offset = divmod(
                (sector - self._volume.fatbase) * SECTOR_SIZE + offset + 1,
                SECTOR_SIZE,
            )
            result = window.move(self._volume.fatbase + sector)
            if result is not FileResult.OK:
                return result

            second = window.buffer[offset]
            if cluster & 1:
                window.buffer[offset] = (value >> 4) & 0xFF
            else:
                window.buffer[offset] = (second & 0xF0) | ((value >> 8) & 0x0F)
        elif fat_type is FatType.FAT_16:
            window.buffer[offset : offset + 2] = (value & 0xFFFF).to_bytes(2, 'little')
        else:
            old = int.from_bytes(window.buffer[offset : offset + 4], 'little')
            new = (value & FatType.FAT_32.mask) | (old & FAT32_RESERVED_BITS)
            window.buffer[offset : offset + 4] = new.to_bytes(4, 'little')

        window.mark_dirty()
        return FileResult.OK

    def count_free(self) -> tuple[FileResult, int]:
        """Count the free entries of the FAT by scanning all of it."""
        volume = self._volume
        free = 0

        if volume.fs_type is FatType.FAT_12:
            for cluster in range(2, volume.n_fatent):
                value = self.get(cluster)
                if isinstance(value, FileResult):
                    return FileResult.DISK_ERROR, 0
                if value == CLUSTER_EMPTY:
                    free += 1
            return FileResult.OK, free

        entry_size = 2 if volume.fs_type is FatType.FAT_16 else 4
        window = volume.window
        sector = volume.fatbase
        offset = 0

        # Entries 0 and 1 are reserved and never zero on a valid volume
        for _ in range(volume.n_fatent):
            if offset == 0:
                result = window.move(sector)
                if result is not FileResult.OK:
                    return result, 0
                sector += 1

            entry = window.buffer[offset : offset + entry_size]
            value = int.from_bytes(entry, 'little')
            if entry_size == 4:
                value &= FatType.FAT_32.mask
            if value == CLUSTER_EMPTY:
                free += 1
            offset = (offset + entry_size) % SECTOR_SIZE
        return FileResult.OK, free

    def __len__(self) -> int:
        """Number of FAT entries."""
        return self._volume.n_fatent
