"""Mounted FAT volume and the identifiers of objects living on it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import count
from typing import TYPE_CHECKING, Iterator

from ..base import FileResult, ValidationError
from ..device import DiskControl, DiskResult, DiskStatus
from .base import FatType
from .fat import FatTable
from .reserved import (
    FS_INFO_SECTOR,
    FS_INFO_UNKNOWN,
    BootSectorKind,
    FsInfo,
    VolumeGeometry,
    check_boot_sector,
    partition_starts,
)
from .window import SectorWindow

if TYPE_CHECKING:
    from ..device import BlockDevice

__all__ = ['FatVolume', 'ObjectId', 'FSI_DISABLED', 'FSI_DIRTY']


log = logging.getLogger(__name__)


FSI_DISABLED = 0x80  # FSInfo sector is never written
FSI_DIRTY = 0x01  # allocation hints changed since the last sync


class FatVolume:
    """State of one FAT volume.

    A volume is bound to a physical drive of a block device and, optionally, to a
    forced MBR partition (1 to 4, 0 probes automatically). It starts out unmounted
    (``fs_type is None``); ``mount()`` probes the device and fills in the layout.

    Every successful mount gets a new mount ``id`` drawn from ``ids``. Objects
    opened on the volume record this id and become stale once it changes.
    """

    def __init__(
        self,
        device: BlockDevice,
        drive: int = 0,
        partition: int = 0,
        ids: Iterator[int] | None = None,
    ):
        if not 0 <= partition <= 4:
            raise ValueError('Partition number must be in range (0, 4)')

        self.device = device
        self.drive = drive
        self.partition = partition
        self._ids = ids if ids is not None else count(1)

        self.window = SectorWindow(device, drive)
        self.fat = FatTable(self)

        self.fs_type: FatType | None = None
        self.id = 0
        self.n_fats = 0
        self.n_rootdir = 0
        self.csize = 0
        self.last_clst = FS_INFO_UNKNOWN
        self.free_clst = FS_INFO_UNKNOWN
        self.fsi_flag = FSI_DISABLED
        self.n_fatent = 0
        self.fsize = 0
        self.volbase = 0
        self.fatbase = 0
        self.dirbase = 0
        self.database = 0
        self.volume_id = 0
        self.volume_label = b''

    @property
    def mounted(self) -> bool:
        return self.fs_type is not None

    def status(self) -> DiskStatus:
        return self.device.status(self.drive)

    def mount(self, write: bool = False) -> FileResult:
        """Make sure the volume is mounted, probing the device if necessary.

        If the volume is mounted and its drive is still initialized, nothing is
        done. If ``write`` is set, ``FileResult.WRITE_PROTECTED`` is returned for a
        write protected drive.
        """
        if self.fs_type is not None:
            status = self.status()
            if not status & DiskStatus.NOINIT:
                if write and status & DiskStatus.PROTECT:
                    return FileResult.WRITE_PROTECTED
                return FileResult.OK
            log.info(f'Drive {self.drive} was reinitialized, mounting again')

        self.fs_type = None
        status = self.device.initialize(self.drive)
        if status & DiskStatus.NOINIT:
            return FileResult.NOT_READY
        if write and status & DiskStatus.PROTECT:
            return FileResult.WRITE_PROTECTED

        base, kind = self._find_boot_sector()
        if kind is BootSectorKind.DISK_ERROR:
            return FileResult.DISK_ERROR
        if kind is not BootSectorKind.FAT:
            log.debug(f'No FAT boot sector found on drive {self.drive}')
            return FileResult.NO_FILESYSTEM

        try:
            geometry = VolumeGeometry.from_boot_sector(self.window.buffer, base)
        except ValidationError as e:
            log.debug(f'Boot sector at sector {base} rejected: {e}')
            return FileResult.NO_FILESYSTEM

        self._apply_geometry(geometry)
        self._load_fsinfo(geometry)

        self.fs_type = geometry.fat_type
        self.id = next(self._ids)
        log.info(
            f'Mounted {self.fs_type} volume at sector {base} of drive {self.drive} '
            f'(mount id {self.id})'
        )
        log.info(
            f'{self.n_fatent - 2} clusters of {self.csize} sectors, '
            f'{self.n_fats} FAT(s) of {self.fsize} sectors'
        )
        return FileResult.OK

    def _find_boot_sector(self) -> tuple[int, BootSectorKind]:
        """Locate the boot sector of the volume, following the MBR if needed."""
        base = 0
        kind = check_boot_sector(self.window, base)

        if kind is BootSectorKind.NOT_FAT or (
            kind is BootSectorKind.FAT and self.partition
        ):
            starts = partition_starts(self.window.buffer)
            if self.partition:
                candidates = [starts[self.partition - 1]]
            else:
                candidates = starts

            for base in candidates:
                if base > 0:
                    kind = check_boot_sector(self.window, base)
                else:
                    kind = BootSectorKind.NOT_BOOT
                if kind is BootSectorKind.FAT:
                    break
        return base, kind

    def _apply_geometry(self, geometry: VolumeGeometry) -> None:
        self.n_fats = geometry.n_fats
        self.n_rootdir = geometry.n_rootdir
        self.csize = geometry.csize
        self.n_fatent = geometry.n_fatent
        self.fsize = geometry.fsize
        self.volbase = geometry.volbase
        self.fatbase = geometry.fatbase
        self.dirbase = geometry.dirbase
        self.database = geometry.database
        self.volume_id = geometry.volume_id
        self.volume_label = geometry.volume_label
        self.window.configure_mirror(geometry.fatbase, geometry.fsize, geometry.n_fats)

    def _load_fsinfo(self, geometry: VolumeGeometry) -> None:
        """Load the allocation hints of the FSInfo sector (FAT32 only)."""
        self.last_clst = self.free_clst = FS_INFO_UNKNOWN
        self.fsi_flag = FSI_DISABLED

        if geometry.fat_type is not FatType.FAT_32:
            return
        if geometry.fsinfo_sector != FS_INFO_SECTOR:
            return
        if self.window.move(geometry.volbase + FS_INFO_SECTOR) is not FileResult.OK:
            return

        self.fsi_flag = 0
        try:
            fsinfo = FsInfo.from_buffer(self.window.buffer)
        except ValidationError as e:
            log.warning(f'Ignoring FS information sector of drive {self.drive}: {e}')
            return
        self.free_clst = fsinfo.free_clusters
        self.last_clst = fsinfo.last_allocated_cluster

    def unmount(self) -> None:
        """Forget the mounted state. The volume is mounted again on next use."""
        if self.fs_type is not None:
            log.info(f'Unmounted volume of drive {self.drive} (mount id {self.id})')
        self.fs_type = None
        self.window.invalidate()

    def sync(self) -> FileResult:
        """Write back the window and the FSInfo sector, then flush the device."""
        result = self.window.sync()
        if result is not FileResult.OK:
            return result

        if self.fs_type is FatType.FAT_32 and self.fsi_flag == FSI_DIRTY:
            sector = self.volbase + FS_INFO_SECTOR
            self.window.clear(sector)
            FsInfo.new(self.free_clst, self.last_clst).pack_into(self.window.buffer)
            disk_result = self.device.write(self.drive, self.window.buffer, sector, 1)
            if disk_result is not DiskResult.OK:
                return FileResult.DISK_ERROR
            self.fsi_flag = 0

        result, _ = self.device.control(self.drive, DiskControl.SYNC)
        if result is not DiskResult.OK:
            return FileResult.DISK_ERROR
        return FileResult.OK

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(drive={self.drive}, '
            f'partition={self.partition}, fs_type={self.fs_type}, id={self.id})'
        )


@dataclass
class ObjectId:
    """Header shared by file and directory objects.

    ``sclust`` is the start cluster of the object (0 for the root directory and for
    empty files), ``objsize`` its size in bytes (files only).
    """

    volume: FatVolume | None
    id: int = 0
    attr: int = 0
    sclust: int = 0
    objsize: int = 0

    def validate(self) -> FileResult:
        """Check that the object still refers to the mount it was created on."""
        volume = self.volume
        if (
            volume is None
            or volume.fs_type is None
            or volume.id != self.id
            or volume.status() & DiskStatus.NOINIT
        ):
            return FileResult.INVALID_OBJECT
        return FileResult.OK

    def rebind(self) -> ObjectId:
        """Return a copy referring to the same volume and mount."""
        return ObjectId(self.volume, self.id)
