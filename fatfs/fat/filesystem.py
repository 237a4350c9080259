"""Volume table: mount lifecycle and path based operations on FAT volumes."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from itertools import count
from typing import TYPE_CHECKING

from ..base import FileResult
from .base import FatType
from .chain import (
    ChainStatus,
    clear_cluster,
    cluster_to_sector,
    create_chain,
    remove_chain,
)
from .directory import (
    ENTRY_SIZE,
    Attributes,
    DirCursor,
    DirectoryEntry,
    DirectoryObject,
    FileInfo,
    NameStatus,
    fat_timestamp,
)
from .file import OPEN_MASK, AccessMode, FileObject
from .volume import FSI_DIRTY, FatVolume, ObjectId

if TYPE_CHECKING:
    from ..device import BlockDevice
    from ..typing_ import Clock

__all__ = ['VolumeTable', 'VOLUME_STRINGS', 'MAX_VOLUMES']


log = logging.getLogger(__name__)


MAX_VOLUMES = 10  # drive numbers are single digits
VOLUME_STRINGS = ('RAM', 'NAND', 'CF', 'SD', 'SD2', 'USB', 'USB2', 'USB3')

DOT_NAME = b'.' + b' ' * 10
DOTDOT_NAME = b'..' + b' ' * 9


class VolumeTable:
    """Table of the logical drives served by one block device.

    Drive ``n`` is backed by physical drive ``n`` of the device. Paths may start
    with a drive prefix, either a single digit (``'1:/DIR'``) or one of
    ``VOLUME_STRINGS`` (``'sd:/DIR'``, case-insensitive); paths without a prefix
    refer to drive 0.

    Drives have to be registered before use. They are mounted lazily by the first
    operation and mounted again whenever the device reports the drive as
    reinitialized. Operations return a ``FileResult`` (and possibly a value), they
    never raise for file system conditions.
    """

    def __init__(
        self, device: BlockDevice, volumes: int = 1, clock: Clock = datetime.now
    ):
        if not 1 <= volumes <= MAX_VOLUMES:
            raise ValueError(f'Volume count must be in range (1, {MAX_VOLUMES})')
        self._device = device
        self._slots: list[FatVolume | None] = [None] * volumes
        self._ids = count(1)  # mount ids, shared by all drives
        self._clock = clock

    @property
    def device(self) -> BlockDevice:
        return self._device

    def __len__(self) -> int:
        """Number of logical drives."""
        return len(self._slots)

    def __getitem__(self, drive: int) -> FatVolume | None:
        return self._slots[drive]

    def register(self, drive: int = 0, partition: int = 0) -> FatVolume:
        """Register logical drive ``drive`` without mounting it.

        ``partition`` forces the MBR partition (1 to 4) holding the volume; 0 picks
        the first FAT volume found. An existing registration is replaced, which
        invalidates all objects opened on it.
        """
        if not 0 <= drive < len(self._slots):
            last = len(self._slots) - 1
            raise ValueError(f'Drive number must be in range (0, {last})')

        previous = self._slots[drive]
        if previous is not None:
            previous.unmount()
        volume = FatVolume(self._device, drive, partition, self._ids)
        self._slots[drive] = volume
        log.info(f'Registered drive {drive} (partition {partition or "auto"})')
        return volume

    def resolve_drive(self, path: str) -> tuple[int, str]:
        """Split ``path`` into its drive number and the path without drive prefix.

        The drive number is -1 if the prefix does not name a drive of the table.
        """
        i = 0
        while i < len(path) and path[i] >= '!' and path[i] != ':':
            i += 1
        if i == len(path) or path[i] != ':':
            return 0, path  # no drive prefix

        prefix = path[:i]
        if len(prefix) == 1 and '0' <= prefix <= '9':
            drive = int(prefix)
        elif prefix.upper() in VOLUME_STRINGS:
            drive = VOLUME_STRINGS.index(prefix.upper())
        else:
            drive = MAX_VOLUMES

        if drive < len(self._slots):
            return drive, path[i + 1 :]
        return -1, path

    def _find_volume(
        self, path: str, write: bool = False
    ) -> tuple[FileResult, FatVolume | None, str]:
        """Resolve the drive of ``path`` and make sure its volume is mounted."""
        drive, path = self.resolve_drive(path)
        if drive < 0:
            return FileResult.INVALID_DRIVE, None, path

        volume = self._slots[drive]
        if volume is None:
            return FileResult.NOT_ENABLED, None, path
        return volume.mount(write), volume, path

    def mount(self, path: str = '') -> FileResult:
        """Register the drive of ``path`` if needed and mount it right away."""
        drive, _ = self.resolve_drive(path)
        if drive < 0:
            return FileResult.INVALID_DRIVE

        volume = self._slots[drive]
        if volume is None:
            volume = self.register(drive)
        return volume.mount()

    def unmount(self, path: str = '') -> FileResult:
        """Unmount the drive of ``path``. It is mounted again on next use.

        Objects opened on the drive become invalid.
        """
        drive, _ = self.resolve_drive(path)
        if drive < 0:
            return FileResult.INVALID_DRIVE

        volume = self._slots[drive]
        if volume is None:
            return FileResult.NOT_ENABLED
        volume.unmount()
        return FileResult.OK

    def drop(self, path: str = '') -> FileResult:
        """Unmount and unregister the drive of ``path``."""
        result = self.unmount(path)
        if result is FileResult.OK:
            drive, _ = self.resolve_drive(path)
            self._slots[drive] = None
            log.info(f'Dropped drive {drive}')
        return result

    def open(
        self, path: str, mode: AccessMode | int = AccessMode.READ
    ) -> tuple[FileResult, FileObject | None]:
        """Open a file. See ``FileObject.open()`` for the meaning of ``mode``."""
        if isinstance(mode, AccessMode):
            mode = mode.value
        mode &= OPEN_MASK

        write = bool(mode & ~AccessMode.READ.value)
        result, volume, path = self._find_volume(path, write)
        if result is not FileResult.OK or volume is None:
            return result, None
        return FileObject.open(volume, path, mode, self._clock)

    def opendir(self, path: str) -> tuple[FileResult, DirectoryObject | None]:
        """Open a directory for reading its entries."""
        result, volume, path = self._find_volume(path)
        if result is not FileResult.OK or volume is None:
            return result, None

        cursor = DirCursor(ObjectId(volume, volume.id))
        result = cursor.follow(path)
        if result is FileResult.OK:
            if NameStatus.NONAME not in cursor.status:
                if cursor.obj.attr & Attributes.SUBDIRECTORY.value:
                    cursor.obj.sclust = cursor.entry().cluster(volume.fs_type)
                else:
                    result = FileResult.PATH_NOT_FOUND
            if result is FileResult.OK:
                result = cursor.rewind(0)

        if result is FileResult.FILE_NOT_EXIST:
            result = FileResult.PATH_NOT_FOUND
        if result is not FileResult.OK:
            return result, None
        return result, DirectoryObject(cursor)

    def stat(self, path: str) -> tuple[FileResult, FileInfo | None]:
        """Return information about the file or directory at ``path``."""
        result, volume, path = self._find_volume(path)
        if result is not FileResult.OK or volume is None:
            return result, None

        cursor = DirCursor(ObjectId(volume, volume.id))
        result = cursor.follow(path)
        if result is not FileResult.OK:
            return result, None
        if NameStatus.NONAME in cursor.status:
            return FileResult.INVALID_PATH_NAME, None
        return result, cursor.info()

    def getfree(self, path: str = '') -> tuple[FileResult, int]:
        """Return the number of free clusters of the drive of ``path``.

        The FAT is only scanned if the count is not known yet.
        """
        result, volume, _ = self._find_volume(path)
        if result is not FileResult.OK or volume is None:
            return result, 0

        if volume.free_clst <= volume.n_fatent - 2:
            return FileResult.OK, volume.free_clst

        result, free = volume.fat.count_free()
        if result is FileResult.OK:
            volume.free_clst = free
            volume.fsi_flag |= FSI_DIRTY
        return result, free

    def getlabel(self, path: str = '') -> tuple[FileResult, str]:
        """Return the volume label found in the root directory ('' if none)."""
        result, volume, _ = self._find_volume(path)
        if result is not FileResult.OK or volume is None:
            return result, ''

        cursor = DirCursor(ObjectId(volume, volume.id))
        result = cursor.rewind(0)
        if result is FileResult.OK:
            result = cursor.read(volume_label=True)
        if result is FileResult.FILE_NOT_EXIST:
            return FileResult.OK, ''
        if result is not FileResult.OK:
            return result, ''

        raw_name = cursor.entry().raw_name
        return result, raw_name.rstrip(b' ').decode('850', errors='replace')

    def unlink(self, path: str) -> FileResult:
        """Delete a file or an empty directory."""
        result, volume, path = self._find_volume(path, write=True)
        if result is not FileResult.OK or volume is None:
            return result

        cursor = DirCursor(ObjectId(volume, volume.id))
        result = cursor.follow(path)
        if result is not FileResult.OK:
            return result
        if cursor.status & (NameStatus.NONAME | NameStatus.DOT):
            return FileResult.INVALID_PATH_NAME
        if cursor.obj.attr & Attributes.READ_ONLY.value:
            return FileResult.ACCESS_DENIED

        cluster = cursor.entry().cluster(volume.fs_type)
        if cursor.obj.attr & Attributes.SUBDIRECTORY.value:
            # Directory has to be empty
            sub = DirCursor(ObjectId(volume, volume.id, sclust=cluster))
            result = sub.rewind(0)
            if result is FileResult.OK:
                result = sub.read()
                if result is FileResult.OK:
                    result = FileResult.ACCESS_DENIED
                elif result is FileResult.FILE_NOT_EXIST:
                    result = FileResult.OK
            if result is not FileResult.OK:
                return result

        result = cursor.remove()
        if result is FileResult.OK and cluster:
            result = remove_chain(volume, cluster)
        if result is FileResult.OK:
            result = volume.sync()
        return result

    def mkdir(self, path: str) -> FileResult:
        """Create a directory."""
        result, volume, path = self._find_volume(path, write=True)
        if result is not FileResult.OK or volume is None:
            return result

        cursor = DirCursor(ObjectId(volume, volume.id))
        result = cursor.follow(path)
        if result is FileResult.OK:
            return FileResult.EXISTS
        if result is not FileResult.FILE_NOT_EXIST:
            return result
        if NameStatus.DOT in cursor.status:
            return FileResult.INVALID_PATH_NAME

        chain = create_chain(volume, 0)
        if chain.status is ChainStatus.DISK_FULL:
            return FileResult.ACCESS_DENIED
        if not chain.ok:
            return chain.result

        cluster = chain.cluster
        date, time = fat_timestamp(self._clock)
        result = clear_cluster(volume, cluster)
        if result is FileResult.OK:
            # Dot entries at the start of the new table, the window holds its first
            # sector now
            window = volume.window
            dot = DirectoryEntry.new(DOT_NAME, Attributes.SUBDIRECTORY)
            dot = dot.with_cluster(cluster).with_modified(date, time)
            dot.pack_into(window.buffer, 0)
            dotdot = DirectoryEntry.new(DOTDOT_NAME, Attributes.SUBDIRECTORY)
            dotdot = dotdot.with_cluster(self._parent_cluster(volume, cursor))
            dotdot.with_modified(date, time).pack_into(window.buffer, ENTRY_SIZE)
            window.mark_dirty()
            result = cursor.register()

        if result is FileResult.OK:
            entry = cursor.entry().with_cluster(cluster).with_modified(date, time)
            cursor.store(replace(entry, attr=Attributes.SUBDIRECTORY.value))
            result = volume.sync()
        else:
            remove_chain(volume, cluster)
        return result

    @staticmethod
    def _parent_cluster(volume: FatVolume, cursor: DirCursor) -> int:
        """Cluster stored in the '..' entry of a directory placed in the table of
        ``cursor``; the root directory is always referred to as 0.
        """
        parent = cursor.obj.sclust
        if volume.fs_type is FatType.FAT_32 and parent == volume.dirbase:
            return 0
        return parent

    def rename(self, old: str, new: str) -> FileResult:
        """Rename or move a file or directory within its volume.

        A drive prefix of ``new`` is ignored.
        """
        _, new = self.resolve_drive(new)
        result, volume, old = self._find_volume(old, write=True)
        if result is not FileResult.OK or volume is None:
            return result

        cursor_old = DirCursor(ObjectId(volume, volume.id))
        result = cursor_old.follow(old)
        if result is not FileResult.OK:
            return result
        if cursor_old.status & (NameStatus.NONAME | NameStatus.DOT):
            return FileResult.INVALID_PATH_NAME

        saved = cursor_old.entry()
        cursor_new = cursor_old.rebind()
        result = cursor_new.follow(new)
        if result is FileResult.OK:
            same_entry = (
                cursor_new.obj.sclust == cursor_old.obj.sclust
                and cursor_new.dptr == cursor_old.dptr
            )
            result = FileResult.FILE_NOT_EXIST if same_entry else FileResult.EXISTS
        if result is not FileResult.FILE_NOT_EXIST:
            return result

        result = cursor_new.register()
        if result is not FileResult.OK:
            return result

        # Everything but the name moves to the new entry
        attr = saved.attr
        if not saved.is_directory:
            attr |= Attributes.ARCHIVE.value
        registered = cursor_new.entry()
        entry = replace(
            saved,
            name=registered.name,
            extension=registered.extension,
            attr=attr,
            case_info=registered.case_info,
        )
        cursor_new.store(entry)

        if saved.is_directory and cursor_old.obj.sclust != cursor_new.obj.sclust:
            # Moved to another directory, update the '..' entry
            sector = cluster_to_sector(volume, entry.cluster(volume.fs_type))
            if sector == 0:
                return FileResult.INTERNAL_ERROR
            window = volume.window
            result = window.move(sector)
            if result is not FileResult.OK:
                return result
            dotdot = DirectoryEntry.from_buffer(window.buffer, ENTRY_SIZE)
            if dotdot.name[1:2] == b'.':
                parent = self._parent_cluster(volume, cursor_new)
                dotdot.with_cluster(parent).pack_into(window.buffer, ENTRY_SIZE)
                window.mark_dirty()

        result = cursor_old.remove()
        if result is FileResult.OK:
            result = volume.sync()
        return result

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._device!r}, volumes={len(self)})'
