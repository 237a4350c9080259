"""File objects: open, read, write, seek, truncate, sync and close."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from enum import Flag
from typing import TYPE_CHECKING

from ..base import FileResult
from ..device import SECTOR_SIZE, DiskResult
from .chain import ChainStatus, cluster_to_sector, create_chain, remove_chain
from .directory import (
    Attributes,
    DirCursor,
    DirectoryEntry,
    NameStatus,
    fat_timestamp,
)
from .volume import ObjectId

if TYPE_CHECKING:
    from ..typing_ import Clock, ReadableBuffer
    from .volume import FatVolume

__all__ = ['AccessMode', 'FileObject', 'MAX_FILE_SIZE']


log = logging.getLogger(__name__)


MAX_FILE_SIZE = 0xFFFFFFFF


class AccessMode(Flag):
    """Access mode and state bits of a file object."""

    OPEN_EXISTING = 0
    READ = 0x01
    WRITE = 0x02
    CREATE_NEW = 0x04
    CREATE_ALWAYS = 0x08
    OPEN_ALWAYS = 0x10
    SEEK_END = 0x20
    APPEND = OPEN_ALWAYS | SEEK_END

    # State
    MODIFIED = 0x40
    DIRTY = 0x80  # private sector buffer holds unwritten data


OPEN_MASK = 0x3F
READ_ONLY = Attributes.READ_ONLY.value
SUBDIRECTORY = Attributes.SUBDIRECTORY.value
CREATE_MODES = (
    AccessMode.CREATE_NEW | AccessMode.CREATE_ALWAYS | AccessMode.OPEN_ALWAYS
)


class FileObject:
    """Open file.

    Do not use ``__init__`` directly, use ``FileObject.open()`` (or
    ``VolumeTable.open()``) instead.

    Every file has a private sector buffer caching the sector at ``sect``. Errors
    raised during ``read()``, ``write()``, ``seek()`` and ``truncate()`` are stored
    in ``err`` and returned by every later call on the object.
    """

    def __init__(
        self,
        obj: ObjectId,
        flag: AccessMode,
        dir_sect: int,
        dir_offset: int,
        clock: Clock = datetime.now,
    ):
        self.obj = obj
        self.flag = flag
        self.err = FileResult.OK
        self.fptr = 0
        self.clust = 0
        self.sect = 0
        self.buf = bytearray(SECTOR_SIZE)
        self.dir_sect = dir_sect
        self.dir_offset = dir_offset
        self._clock = clock

    @classmethod
    def open(
        cls,
        volume: FatVolume,
        path: str,
        mode: AccessMode | int,
        clock: Clock = datetime.now,
    ) -> tuple[FileResult, FileObject | None]:
        """Open the file at ``path`` on the mounted ``volume``.

        ``mode`` is a combination of ``READ``, ``WRITE`` and at most one of the
        creation modes ``CREATE_NEW``, ``CREATE_ALWAYS``, ``OPEN_ALWAYS`` and
        ``APPEND``. Without a creation mode, the file has to exist.
        """
        if isinstance(mode, AccessMode):
            mode = mode.value
        mode = AccessMode(mode & OPEN_MASK)
        cursor = DirCursor(ObjectId(volume, volume.id))

        result = cursor.follow(path)
        if result is FileResult.OK and NameStatus.NONAME in cursor.status:
            result = FileResult.INVALID_PATH_NAME

        if mode & CREATE_MODES:
            if result is not FileResult.OK:
                if result is FileResult.FILE_NOT_EXIST:
                    result = cursor.register()
                mode |= AccessMode.CREATE_ALWAYS
            elif cursor.obj.attr & (READ_ONLY | SUBDIRECTORY):
                result = FileResult.ACCESS_DENIED
            elif mode & AccessMode.CREATE_NEW:
                result = FileResult.EXISTS

            if result is FileResult.OK and mode & AccessMode.CREATE_ALWAYS:
                result = cls._reset_entry(volume, cursor, clock)
        elif result is FileResult.OK:
            if cursor.obj.attr & SUBDIRECTORY:
                result = FileResult.ACCESS_DENIED
            elif mode & AccessMode.WRITE and cursor.obj.attr & READ_ONLY:
                result = FileResult.ACCESS_DENIED

        if result is not FileResult.OK:
            return result, None

        if mode & AccessMode.CREATE_ALWAYS:
            mode |= AccessMode.MODIFIED

        entry = cursor.entry()
        obj = ObjectId(
            volume,
            volume.id,
            attr=entry.attr,
            sclust=entry.cluster(volume.fs_type),
            objsize=entry.size,
        )
        fp = cls(obj, mode, cursor.sect, cursor.offset, clock)

        if mode & AccessMode.SEEK_END and obj.objsize > 0:
            result = fp._seek_end()
            if result is not FileResult.OK:
                return result, None
        return FileResult.OK, fp

    @staticmethod
    def _reset_entry(volume: FatVolume, cursor: DirCursor, clock: Clock) -> FileResult:
        """Truncate the existing file at ``cursor`` to zero length."""
        window = volume.window
        entry = cursor.entry()
        old_cluster = entry.cluster(volume.fs_type)

        date, time = fat_timestamp(clock)
        entry = replace(
            entry.with_created(date, time).with_cluster(0),
            attr=Attributes.ARCHIVE.value,
            size=0,
        )
        cursor.store(entry)

        if old_cluster:
            sector = window.sector
            result = remove_chain(volume, old_cluster)
            if result is not FileResult.OK:
                return result
            result = window.move(sector)
            if result is not FileResult.OK:
                return result
            volume.last_clst = old_cluster - 1  # reuse the freed chain
        return FileResult.OK

    def _seek_end(self) -> FileResult:
        """Move the file pointer to the end and load the last partial sector."""
        volume = self.volume
        cluster_bytes = volume.csize * SECTOR_SIZE
        self.fptr = self.obj.objsize
        cluster = self.obj.sclust
        offset = self.obj.objsize

        while offset > cluster_bytes:
            value = volume.fat.get(cluster)
            if isinstance(value, FileResult):
                return value
            if value <= 1:
                return FileResult.INTERNAL_ERROR
            cluster = value
            offset -= cluster_bytes
        self.clust = cluster

        if offset % SECTOR_SIZE:
            sector = cluster_to_sector(volume, cluster)
            if sector == 0:
                return FileResult.INTERNAL_ERROR
            self.sect = sector + offset // SECTOR_SIZE
            if self._read_sector(self.sect) is not FileResult.OK:
                return FileResult.DISK_ERROR
        return FileResult.OK

    @property
    def volume(self) -> FatVolume:
        volume = self.obj.volume
        if volume is None:
            raise ValueError('File object does not refer to a volume')
        return volume

    @property
    def size(self) -> int:
        return self.obj.objsize

    def tell(self) -> int:
        return self.fptr

    def _check(self) -> FileResult:
        """Validate the object and return the stored error, if any."""
        result = self.obj.validate()
        if result is FileResult.OK:
            result = self.err
        return result

    def _abort(self, result: FileResult) -> FileResult:
        self.err = result
        return result

    def _read_sector(self, sector: int) -> FileResult:
        volume = self.volume
        if volume.device.read(volume.drive, self.buf, sector, 1) is not DiskResult.OK:
            return FileResult.DISK_ERROR
        return FileResult.OK

    def _write_back(self) -> FileResult:
        """Write the private sector buffer back if it is dirty."""
        if self.flag & AccessMode.DIRTY:
            volume = self.volume
            disk_result = volume.device.write(volume.drive, self.buf, self.sect, 1)
            if disk_result is not DiskResult.OK:
                return FileResult.DISK_ERROR
            self.flag &= ~AccessMode.DIRTY
        return FileResult.OK

    def read(self, size: int) -> tuple[FileResult, bytes]:
        """Read up to ``size`` bytes from the current position.

        Returns the result and the bytes read, which are fewer than ``size`` at the
        end of the file (or if an error occurred).
        """
        result = self._check()
        if result is not FileResult.OK:
            return result, b''
        if not self.flag & AccessMode.READ:
            return FileResult.ACCESS_DENIED, b''

        volume = self.volume
        size = max(0, min(size, self.obj.objsize - self.fptr))
        out = bytearray()

        while size > 0:
            if self.fptr % SECTOR_SIZE == 0:
                # Sector boundary
                csect = (self.fptr // SECTOR_SIZE) & (volume.csize - 1)
                if csect == 0:
                    # Cluster boundary
                    if self.fptr == 0:
                        cluster: int | FileResult = self.obj.sclust
                    else:
                        cluster = volume.fat.get(self.clust)
                    if isinstance(cluster, FileResult):
                        return self._abort(cluster), bytes(out)
                    if cluster < 2:
                        return self._abort(FileResult.INTERNAL_ERROR), bytes(out)
                    self.clust = cluster

                sector = cluster_to_sector(volume, self.clust)
                if sector == 0:
                    return self._abort(FileResult.INTERNAL_ERROR), bytes(out)
                sector += csect

                count = size // SECTOR_SIZE
                if count > 0:
                    # Transfer whole sectors directly, clipped at the cluster end
                    count = min(count, volume.csize - csect)
                    block = bytearray(count * SECTOR_SIZE)
                    disk_result = volume.device.read(volume.drive, block, sector, count)
                    if disk_result is not DiskResult.OK:
                        return self._abort(FileResult.DISK_ERROR), bytes(out)
                    if self.flag & AccessMode.DIRTY and 0 <= self.sect - sector < count:
                        # Unwritten data in the private buffer takes precedence
                        pos = (self.sect - sector) * SECTOR_SIZE
                        block[pos : pos + SECTOR_SIZE] = self.buf
                    out += block
                    self.fptr += len(block)
                    size -= len(block)
                    continue

                if self.sect != sector:
                    if self._write_back() is not FileResult.OK:
                        return self._abort(FileResult.DISK_ERROR), bytes(out)
                    if self._read_sector(sector) is not FileResult.OK:
                        return self._abort(FileResult.DISK_ERROR), bytes(out)
                self.sect = sector

            offset = self.fptr % SECTOR_SIZE
            chunk = min(SECTOR_SIZE - offset, size)
            out += self.buf[offset : offset + chunk]
            self.fptr += chunk
            size -= chunk

        return FileResult.OK, bytes(out)

    def write(self, data: ReadableBuffer) -> tuple[FileResult, int]:
        """Write ``data`` at the current position.

        Returns the result and the number of bytes written. If the volume is full,
        fewer bytes are written and the result is still ``FileResult.OK``.
        """
        result = self._check()
        if result is not FileResult.OK:
            return result, 0
        if not self.flag & AccessMode.WRITE:
            return FileResult.ACCESS_DENIED, 0

        volume = self.volume
        data = bytes(data)
        size = min(len(data), MAX_FILE_SIZE - self.fptr)
        written = 0

        while size > 0:
            if self.fptr % SECTOR_SIZE == 0:
                # Sector boundary
                csect = (self.fptr // SECTOR_SIZE) & (volume.csize - 1)
                if csect == 0:
                    # Cluster boundary
                    if self.fptr == 0 and self.obj.sclust:
                        cluster = self.obj.sclust
                    else:
                        chain = create_chain(volume, self.clust if self.fptr else 0)
                        if chain.status is ChainStatus.DISK_FULL:
                            log.debug('Volume is full, stopping write')
                            break
                        if not chain.ok:
                            return self._abort(chain.result), written
                        cluster = chain.cluster
                    self.clust = cluster
                    if self.obj.sclust == 0:
                        self.obj.sclust = cluster

                if self._write_back() is not FileResult.OK:
                    return self._abort(FileResult.DISK_ERROR), written

                sector = cluster_to_sector(volume, self.clust)
                if sector == 0:
                    return self._abort(FileResult.INTERNAL_ERROR), written
                sector += csect

                count = size // SECTOR_SIZE
                if count > 0:
                    # Transfer whole sectors directly, clipped at the cluster end
                    count = min(count, volume.csize - csect)
                    block = data[written : written + count * SECTOR_SIZE]
                    disk_result = volume.device.write(
                        volume.drive, block, sector, count
                    )
                    if disk_result is not DiskResult.OK:
                        return self._abort(FileResult.DISK_ERROR), written
                    if 0 <= self.sect - sector < count:
                        # Private buffer now holds stale data, refill it
                        pos = (self.sect - sector) * SECTOR_SIZE
                        self.buf[:] = block[pos : pos + SECTOR_SIZE]
                        self.flag &= ~AccessMode.DIRTY
                    written += len(block)
                    size -= len(block)
                    self.fptr += len(block)
                    self.obj.objsize = max(self.obj.objsize, self.fptr)
                    continue

                if self.sect != sector and self.fptr < self.obj.objsize:
                    # Partial overwrite of existing data
                    if self._read_sector(sector) is not FileResult.OK:
                        return self._abort(FileResult.DISK_ERROR), written
                self.sect = sector

            offset = self.fptr % SECTOR_SIZE
            chunk = min(SECTOR_SIZE - offset, size)
            self.buf[offset : offset + chunk] = data[written : written + chunk]
            self.flag |= AccessMode.DIRTY
            written += chunk
            size -= chunk
            self.fptr += chunk
            self.obj.objsize = max(self.obj.objsize, self.fptr)

        self.flag |= AccessMode.MODIFIED
        return FileResult.OK, written

    def seek(self, offset: int) -> FileResult:
        """Move the file pointer to ``offset``.

        In write mode, seeking beyond the end of the file extends it (allocating
        clusters). Otherwise, the offset is clipped to the file size.
        """
        result = self._check()
        if result is not FileResult.OK:
            return result

        volume = self.volume
        if offset < 0:
            return FileResult.INVALID_PARAMETER
        if offset > self.obj.objsize and not self.flag & AccessMode.WRITE:
            offset = self.obj.objsize

        previous = self.fptr
        self.fptr = new_sector = 0

        if offset > 0:
            cluster_bytes = volume.csize * SECTOR_SIZE
            target_index = (offset - 1) // cluster_bytes
            current_index = (previous - 1) // cluster_bytes
            if previous > 0 and target_index >= current_index:
                # Same or later cluster, continue from the current one
                self.fptr = (previous - 1) & ~(cluster_bytes - 1)
                offset -= self.fptr
                cluster = self.clust
            else:
                cluster = self.obj.sclust
                if cluster == 0:
                    chain = create_chain(volume, 0)
                    if chain.result is not FileResult.OK:
                        return self._abort(chain.result)
                    cluster = chain.cluster
                    self.obj.sclust = cluster
                self.clust = cluster

            if cluster != 0:
                while offset > cluster_bytes:
                    offset -= cluster_bytes
                    self.fptr += cluster_bytes
                    if self.flag & AccessMode.WRITE:
                        if self.fptr > self.obj.objsize:
                            self.obj.objsize = self.fptr
                            self.flag |= AccessMode.MODIFIED
                        chain = create_chain(volume, cluster)
                        if chain.status is ChainStatus.DISK_FULL:
                            offset = 0  # volume is full, clip the file
                            break
                        if not chain.ok:
                            return self._abort(chain.result)
                        cluster = chain.cluster
                    else:
                        value = volume.fat.get(cluster)
                        if isinstance(value, FileResult):
                            return self._abort(value)
                        cluster = value
                    if cluster <= 1 or cluster >= volume.n_fatent:
                        return self._abort(FileResult.INTERNAL_ERROR)
                    self.clust = cluster

                self.fptr += offset
                if offset % SECTOR_SIZE:
                    new_sector = cluster_to_sector(volume, cluster)
                    if new_sector == 0:
                        return self._abort(FileResult.INTERNAL_ERROR)
                    new_sector += offset // SECTOR_SIZE

        if self.fptr > self.obj.objsize:
            self.obj.objsize = self.fptr
            self.flag |= AccessMode.MODIFIED

        if self.fptr % SECTOR_SIZE and new_sector != self.sect:
            if self._write_back() is not FileResult.OK:
                return self._abort(FileResult.DISK_ERROR)
            if self._read_sector(new_sector) is not FileResult.OK:
                return self._abort(FileResult.DISK_ERROR)
            self.sect = new_sector
        return FileResult.OK

    def truncate(self) -> FileResult:
        """Cut the file at the current file pointer."""
        result = self._check()
        if result is not FileResult.OK:
            return result
        if not self.flag & AccessMode.WRITE:
            return FileResult.ACCESS_DENIED

        volume = self.volume
        if self.fptr < self.obj.objsize:
            if self.fptr == 0:
                result = remove_chain(volume, self.obj.sclust)
                self.obj.sclust = 0
            else:
                value = volume.fat.get(self.clust)
                if isinstance(value, FileResult):
                    result = value
                elif value == 1:
                    result = FileResult.INTERNAL_ERROR
                elif value < volume.n_fatent:
                    result = remove_chain(volume, value, self.clust)

            self.obj.objsize = self.fptr
            self.flag |= AccessMode.MODIFIED
            if result is FileResult.OK:
                result = self._write_back()
            if result is not FileResult.OK:
                return self._abort(result)
        return result

    def sync(self) -> FileResult:
        """Write cached data and the directory entry of the file to the device."""
        result = self.obj.validate()
        if result is not FileResult.OK or not self.flag & AccessMode.MODIFIED:
            return result

        result = self._write_back()
        if result is not FileResult.OK:
            return result

        volume = self.volume
        window = volume.window
        result = window.move(self.dir_sect)
        if result is not FileResult.OK:
            return result

        entry = DirectoryEntry.from_buffer(window.buffer, self.dir_offset)
        date, time = fat_timestamp(self._clock)
        entry = replace(
            entry.with_cluster(self.obj.sclust).with_modified(date, time),
            attr=entry.attr | Attributes.ARCHIVE.value,
            size=self.obj.objsize,
            last_accessed_date=0,
        )
        entry.pack_into(window.buffer, self.dir_offset)
        window.mark_dirty()

        result = volume.sync()
        self.flag &= ~AccessMode.MODIFIED
        return result

    def close(self) -> FileResult:
        """Sync the file and invalidate the object."""
        result = self.sync()
        if result is FileResult.OK:
            result = self.obj.validate()
            if result is FileResult.OK:
                self.obj.volume = None
        return result

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(sclust={self.obj.sclust}, '
            f'size={self.obj.objsize}, fptr={self.fptr}, flag={self.flag})'
        )
