"""Directory tables, directory entries and path resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum, Flag
from typing import TYPE_CHECKING

from typing_extensions import Annotated

from ..base import FileResult
from ..bytestruct import ByteStruct
from ..device import SECTOR_SIZE
from .base import MAX_DIR, FatType
from .chain import ChainStatus, clear_cluster, cluster_to_sector, create_chain

if TYPE_CHECKING:
    from ..typing_ import Clock
    from .volume import FatVolume, ObjectId

__all__ = [
    'ENTRY_SIZE',
    'Attributes',
    'Hint',
    'NameStatus',
    'DirectoryEntry',
    'FileInfo',
    'DirCursor',
    'DirectoryObject',
    'create_name',
    'pack_dos_datetime',
    'unpack_dos_datetime',
    'fat_timestamp',
]


log = logging.getLogger(__name__)


ENTRY_SIZE = 32
NAME_SIZE = 11

DOS_FILENAME_OEM_ENCODING = '850'
"""OEM encoding used for DOS filenames.

DOS filenames support characters < 256, but the encoding of characters >= 128 depends
on the file system driver. Code page 850 is used for those.
"""

SEPARATORS = '/\\'
DOS_FILENAME_FORBIDDEN = '"*+,:;<=>?[]|\x7F'

ACTUALLY_E5 = 0x05
ATTRIBUTES_MASK = 0x3F
DOS_YEAR_MIN = 1980
DOS_YEAR_MAX = 2107
DOS_TIME_TEN_MS_MAX = 199


class Hint(Enum):
    """Possible special meanings of the first character of a short filename.

    This excludes 0x05 (meaning that the first character of the short filename is
    actually 0xE5) because it only needs to be handled in filename packing and
    unpacking.
    """

    END_OF_ENTRIES = 0x00
    DOT_ENTRY = 0x2E
    DELETED = 0xE5


class Attributes(Flag):
    """Directory entry attributes."""

    READ_ONLY = 1 << 0
    HIDDEN = 1 << 1
    SYSTEM = 1 << 2
    VOLUME_LABEL = 1 << 3
    SUBDIRECTORY = 1 << 4
    ARCHIVE = 1 << 5
    DEVICE = 1 << 6
    RESERVED = 1 << 7

    VFAT = READ_ONLY | HIDDEN | SYSTEM | VOLUME_LABEL


class NameStatus(Flag):
    """Status of the name segment held by a ``DirCursor``."""

    NONE = 0
    LAST = 0x04  # last segment of the path
    DOT = 0x20  # dot entry
    NONAME = 0x80  # path was empty, cursor refers to the directory itself


def pack_dos_datetime(dt: datetime) -> tuple[int, int, int]:
    """Return a packed DOS datetime as a tuple of (date, time, 10 ms count) from the
    datetime object ``dt``.
    """
    if dt.year < DOS_YEAR_MIN or dt.year > DOS_YEAR_MAX:
        raise ValueError(f'Invalid DOS date {dt}')
    date = ((dt.year - DOS_YEAR_MIN) << 9) | (dt.month << 5) | dt.day
    time = (dt.hour << 11) | (dt.minute << 5) | (dt.second // 2)
    time_ten_ms = (dt.second % 2) * 100 + dt.microsecond // 10_000
    return date, time, time_ten_ms


def unpack_dos_datetime(
    date: int, time: int = 0, time_ten_ms: int = 0
) -> datetime | None:
    """Return a datetime object from a DOS datetime packed as ``date``, ``time`` and
    ``time_ten_ms`` (10 ms count) values or ``None`` if the values passed do not
    represent a valid DOS datetime.
    """
    # Restriction because of the two-second resolution of the seconds field
    if time_ten_ms >= DOS_TIME_TEN_MS_MAX:
        return None

    y = ((date & 0b1111111000000000) >> 9) + DOS_YEAR_MIN
    m = (date & 0b0000000111100000) >> 5
    d = date & 0b0000000000011111
    hh = (time & 0b1111100000000000) >> 11
    mm = (time & 0b0000011111100000) >> 5
    ss = (time & 0b0000000000011111) * 2 + time_ten_ms // 100
    us = (time_ten_ms % 100) * 10_000
    try:
        return datetime(y, m, d, hh, mm, ss, us)
    except ValueError:
        return None


def fat_timestamp(clock: Clock) -> tuple[int, int]:
    """Return the current time of ``clock`` as packed DOS ``(date, time)``."""
    date, time, _ = pack_dos_datetime(clock())
    return date, time


def _unpack_dos_filename(name_bytes: bytes) -> str:
    """Unpack a DOS filename from its 11-byte directory form.

    Padding is removed and a dot is inserted before a non-empty extension.
    """
    name = name_bytes[:8].rstrip(b' ')
    ext = name_bytes[8:].rstrip(b' ')
    if name[:1] == bytes([ACTUALLY_E5]):
        name = bytes([Hint.DELETED.value]) + name[1:]

    name_str = name.decode(DOS_FILENAME_OEM_ENCODING, errors='replace')
    ext_str = ext.decode(DOS_FILENAME_OEM_ENCODING, errors='replace')
    if ext_str:
        return f'{name_str}.{ext_str}'
    return name_str


@dataclass(frozen=True)
class DirectoryEntry(ByteStruct):
    """8.3 directory entry."""

    name: Annotated[bytes, 8]
    extension: Annotated[bytes, 3]
    attr: Annotated[int, 1]
    case_info: Annotated[int, 1]
    created_time_ten_ms: Annotated[int, 1]
    created_time: Annotated[int, 2]
    created_date: Annotated[int, 2]
    last_accessed_date: Annotated[int, 2]
    cluster_high: Annotated[int, 2]
    last_modified_time: Annotated[int, 2]
    last_modified_date: Annotated[int, 2]
    cluster_low: Annotated[int, 2]
    size: Annotated[int, 4]

    @classmethod
    def new(cls, name: bytes, attributes: Attributes = Attributes(0)) -> DirectoryEntry:
        """Return an otherwise zeroed entry with the 11-byte ``name``."""
        return cls(name[:8], name[8:], attributes.value, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)

    @property
    def raw_name(self) -> bytes:
        """Name and extension in their 11-byte directory form."""
        return self.name + self.extension

    @property
    def filename(self) -> str:
        return _unpack_dos_filename(self.raw_name)

    @property
    def attributes(self) -> Attributes:
        return Attributes(self.attr)

    @property
    def is_directory(self) -> bool:
        return bool(self.attr & Attributes.SUBDIRECTORY.value)

    def cluster(self, fat_type: FatType | None) -> int:
        """Start cluster of the entry.

        The upper 16 bits are only used by FAT32.
        """
        if fat_type is FatType.FAT_32:
            return self.cluster_high << 16 | self.cluster_low
        return self.cluster_low

    def with_cluster(self, cluster: int) -> DirectoryEntry:
        return replace(
            self, cluster_high=(cluster >> 16) & 0xFFFF, cluster_low=cluster & 0xFFFF
        )

    def with_modified(self, date: int, time: int) -> DirectoryEntry:
        return replace(self, last_modified_date=date, last_modified_time=time)

    def with_created(self, date: int, time: int) -> DirectoryEntry:
        return replace(self, created_date=date, created_time=time)


@dataclass(frozen=True)
class FileInfo:
    """Information about a file or directory as found in its directory entry.

    ``name`` is empty if the information refers to nothing, which is how the end of
    a directory is reported.
    """

    name: str
    size: int = 0
    attributes: Attributes = Attributes(0)
    date: int = 0
    time: int = 0

    @classmethod
    def from_entry(cls, entry: DirectoryEntry) -> FileInfo:
        return cls(
            entry.filename,
            entry.size,
            entry.attributes,
            entry.last_modified_date,
            entry.last_modified_time,
        )

    @property
    def last_modified(self) -> datetime | None:
        return unpack_dos_datetime(self.date, self.time)

    @property
    def is_directory(self) -> bool:
        return Attributes.SUBDIRECTORY in self.attributes

    def __bool__(self) -> bool:
        return bool(self.name)


def create_name(path: str, pos: int = 0) -> tuple[FileResult, bytes, NameStatus, int]:
    """Build the 11-byte directory form of the path segment starting at ``pos``.

    Returns the result, the name, its status and the position of the next segment.
    Any character ``<= ' '`` ends the path; duplicate separators are skipped.
    """
    name = bytearray(b' ' * NAME_SIZE)
    length = len(path)

    def char_at(i: int) -> str:
        return path[i] if i < length else '\0'

    if char_at(pos) == '.':
        # Dot entries
        dots = 0
        while char_at(pos) == '.' and dots < 2:
            name[dots] = ord('.')
            dots += 1
            pos += 1
        char = char_at(pos)
        if char > ' ' and char not in SEPARATORS:
            return FileResult.INVALID_PATH_NAME, bytes(name), NameStatus.NONE, pos
        pos = min(pos + 1, length)
        while char_at(pos) in SEPARATORS:
            pos += 1
        status = NameStatus.DOT
        if char <= ' ':
            status |= NameStatus.LAST
        return FileResult.OK, bytes(name), status, pos

    i, limit = 0, 8
    while True:
        char = char_at(pos)
        pos += 1
        if char <= ' ':
            break
        if char in SEPARATORS:
            while char_at(pos) in SEPARATORS:
                pos += 1
            break
        if char == '.' or i >= limit:
            if limit == NAME_SIZE or char != '.':
                return FileResult.INVALID_PATH_NAME, bytes(name), NameStatus.NONE, pos
            i, limit = 8, NAME_SIZE
            continue
        if char in DOS_FILENAME_FORBIDDEN:
            return FileResult.INVALID_PATH_NAME, bytes(name), NameStatus.NONE, pos
        if 'a' <= char <= 'z':
            char = char.upper()
        try:
            name[i : i + 1] = char.encode(DOS_FILENAME_OEM_ENCODING)
        except UnicodeEncodeError:
            return FileResult.INVALID_PATH_NAME, bytes(name), NameStatus.NONE, pos
        i += 1

    pos = min(pos, length)
    if i == 0:
        return FileResult.INVALID_PATH_NAME, bytes(name), NameStatus.NONE, pos

    if name[0] == Hint.DELETED.value:
        name[0] = ACTUALLY_E5
    status = NameStatus.LAST if char <= ' ' else NameStatus.NONE
    return FileResult.OK, bytes(name), status, pos


class DirCursor:
    """Position inside a directory table.

    The table is the root directory if ``obj.sclust`` is 0 or the chain starting at
    ``obj.sclust`` otherwise. ``sect`` is 0 once the end of the table is reached.
    ``offset`` is the position of the current entry inside the sector window.

    Entry contents are always accessed through the sector window of the volume,
    so the window has to be moved to ``sect`` before (``find()`` and ``read()`` leave
    it there).
    """

    def __init__(self, obj: ObjectId):
        self.obj = obj
        self.dptr = 0
        self.clust = 0
        self.sect = 0
        self.offset = 0
        self.name = b' ' * NAME_SIZE
        self.status = NameStatus.NONE

    @property
    def volume(self) -> FatVolume:
        volume = self.obj.volume
        if volume is None:
            raise ValueError('Cursor does not refer to a volume')
        return volume

    def rebind(self) -> DirCursor:
        """Return a new cursor on the same volume and mount, starting at the root."""
        return DirCursor(self.obj.rebind())

    def rewind(self, offset: int = 0) -> FileResult:
        """Move the cursor to byte ``offset`` of the directory table."""
        volume = self.volume
        if offset >= MAX_DIR or offset % ENTRY_SIZE:
            return FileResult.INTERNAL_ERROR

        self.dptr = offset
        cluster = self.obj.sclust
        if cluster == 0 and volume.fs_type is FatType.FAT_32:
            cluster = volume.dirbase  # FAT32 root directory is a regular chain

        if cluster == 0:
            # Static root directory of FAT12 and FAT16
            if offset // ENTRY_SIZE >= volume.n_rootdir:
                return FileResult.INTERNAL_ERROR
            sector = volume.dirbase
        else:
            cluster_bytes = volume.csize * SECTOR_SIZE
            while offset >= cluster_bytes:
                value = volume.fat.get(cluster)
                if isinstance(value, FileResult):
                    return value
                if value < 2 or value >= volume.n_fatent:
                    return FileResult.INTERNAL_ERROR
                cluster = value
                offset -= cluster_bytes
            sector = cluster_to_sector(volume, cluster)

        self.clust = cluster
        if sector == 0:
            return FileResult.INTERNAL_ERROR
        self.sect = sector + offset // SECTOR_SIZE
        self.offset = offset % SECTOR_SIZE
        return FileResult.OK

    def next(self, stretch: bool = False) -> FileResult:
        """Advance the cursor to the next entry.

        At the end of a dynamic table, a new cluster is appended (and cleared) if
        ``stretch`` is set, otherwise ``FileResult.FILE_NOT_EXIST`` is returned.
        """
        volume = self.volume
        offset = self.dptr + ENTRY_SIZE
        if self.sect == 0 or offset >= MAX_DIR:
            return FileResult.FILE_NOT_EXIST

        if offset % SECTOR_SIZE == 0:
            self.sect += 1

            if self.clust == 0:
                # Static table
                if offset // ENTRY_SIZE >= volume.n_rootdir:
                    self.sect = 0
                    return FileResult.FILE_NOT_EXIST
            elif (offset // SECTOR_SIZE) & (volume.csize - 1) == 0:
                # Cluster boundary of a dynamic table
                value = volume.fat.get(self.clust)
                if isinstance(value, FileResult):
                    return value
                if value <= 1:
                    return FileResult.INTERNAL_ERROR

                if value >= volume.n_fatent:
                    if not stretch:
                        self.sect = 0
                        return FileResult.FILE_NOT_EXIST

                    chain = create_chain(volume, self.clust)
                    if chain.status is ChainStatus.DISK_FULL:
                        return FileResult.ACCESS_DENIED
                    if not chain.ok:
                        return chain.result
                    if clear_cluster(volume, chain.cluster) is not FileResult.OK:
                        return FileResult.DISK_ERROR
                    value = chain.cluster

                self.clust = value
                self.sect = cluster_to_sector(volume, value)

        self.dptr = offset
        self.offset = offset % SECTOR_SIZE
        return FileResult.OK

    def allocate(self, count: int = 1) -> FileResult:
        """Move the cursor to a run of ``count`` free entries, stretching the table
        if needed.
        """
        window = self.volume.window
        result = self.rewind(0)
        if result is FileResult.OK:
            free = 0
            while True:
                result = window.move(self.sect)
                if result is not FileResult.OK:
                    break
                if window.buffer[self.offset] in (
                    Hint.DELETED.value,
                    Hint.END_OF_ENTRIES.value,
                ):
                    free += 1
                    if free == count:
                        break
                else:
                    free = 0
                result = self.next(stretch=True)
                if result is not FileResult.OK:
                    break

        if result is FileResult.FILE_NOT_EXIST:
            return FileResult.ACCESS_DENIED  # static table is full
        return result

    def find(self) -> FileResult:
        """Search the table for an entry named ``self.name``."""
        window = self.volume.window
        result = self.rewind(0)
        if result is not FileResult.OK:
            return result

        while True:
            result = window.move(self.sect)
            if result is not FileResult.OK:
                return result

            first = window.buffer[self.offset]
            if first == Hint.END_OF_ENTRIES.value:
                return FileResult.FILE_NOT_EXIST

            attr = window.buffer[self.offset + NAME_SIZE] & ATTRIBUTES_MASK
            self.obj.attr = attr
            raw_name = window.buffer[self.offset : self.offset + NAME_SIZE]
            if not attr & Attributes.VOLUME_LABEL.value and raw_name == self.name:
                return FileResult.OK

            result = self.next()
            if result is not FileResult.OK:
                return result

    def read(self, volume_label: bool = False) -> FileResult:
        """Move the cursor to the next used entry, starting at the current one.

        Deleted entries, dot entries and long filename entries are skipped. Volume
        label entries are only returned if ``volume_label`` is set; all other
        entries are only returned if it is not set.
        """
        window = self.volume.window
        result = FileResult.FILE_NOT_EXIST

        while self.sect:
            result = window.move(self.sect)
            if result is not FileResult.OK:
                break

            first = window.buffer[self.offset]
            if first == Hint.END_OF_ENTRIES.value:
                result = FileResult.FILE_NOT_EXIST
                break

            attr = window.buffer[self.offset + NAME_SIZE] & ATTRIBUTES_MASK
            self.obj.attr = attr
            without_archive = attr & ~Attributes.ARCHIVE.value
            is_label = without_archive == Attributes.VOLUME_LABEL.value
            if (
                first != Hint.DELETED.value
                and first != Hint.DOT_ENTRY.value
                and attr != Attributes.VFAT.value
                and is_label == volume_label
            ):
                break

            result = self.next()
            if result is not FileResult.OK:
                break

        if result is not FileResult.OK:
            self.sect = 0
        return result

    def register(self) -> FileResult:
        """Create a zeroed entry named ``self.name`` at a free position."""
        window = self.volume.window
        result = self.allocate(1)
        if result is not FileResult.OK:
            return result

        result = window.move(self.sect)
        if result is not FileResult.OK:
            return result
        DirectoryEntry.new(self.name).pack_into(window.buffer, self.offset)
        window.mark_dirty()
        return FileResult.OK

    def remove(self) -> FileResult:
        """Mark the entry at the cursor as deleted."""
        window = self.volume.window
        result = window.move(self.sect)
        if result is not FileResult.OK:
            return result
        window.buffer[self.offset] = Hint.DELETED.value
        window.mark_dirty()
        return FileResult.OK

    def entry(self) -> DirectoryEntry:
        """Decode the entry at the cursor from the sector window."""
        return DirectoryEntry.from_buffer(self.volume.window.buffer, self.offset)

    def store(self, entry: DirectoryEntry) -> None:
        """Write ``entry`` to the position of the cursor in the sector window."""
        window = self.volume.window
        entry.pack_into(window.buffer, self.offset)
        window.mark_dirty()

    def info(self) -> FileInfo:
        """Information about the entry at the cursor (empty at the end of the table)."""
        if self.sect == 0:
            return FileInfo('')
        return FileInfo.from_entry(self.entry())

    def follow(self, path: str) -> FileResult:
        """Resolve ``path`` starting at the root directory.

        On success, the cursor is positioned at the entry of the last segment and
        its table is the directory containing it. An empty path sets
        ``NameStatus.NONAME`` and positions the cursor at the start of the root
        directory.
        """
        pos = 0
        while pos < len(path) and path[pos] in SEPARATORS:
            pos += 1
        self.obj.sclust = 0

        if pos >= len(path) or path[pos] < ' ':
            self.status = NameStatus.NONAME
            return self.rewind(0)

        while True:
            result, self.name, self.status, pos = create_name(path, pos)
            if result is not FileResult.OK:
                return result

            result = self.find()
            last = NameStatus.LAST in self.status
            if result is not FileResult.OK:
                if result is FileResult.FILE_NOT_EXIST and not last:
                    return FileResult.PATH_NOT_FOUND
                return result
            if last:
                return FileResult.OK

            if not self.obj.attr & Attributes.SUBDIRECTORY.value:
                return FileResult.PATH_NOT_FOUND
            self.obj.sclust = self.entry().cluster(self.volume.fs_type)

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(sclust={self.obj.sclust}, dptr={self.dptr}, '
            f'sect={self.sect}, name={self.name!r})'
        )


class DirectoryObject:
    """Open directory returned by ``VolumeTable.opendir()``."""

    def __init__(self, cursor: DirCursor):
        self._cursor = cursor

    @property
    def cursor(self) -> DirCursor:
        return self._cursor

    def read(self, rewind: bool = False) -> tuple[FileResult, FileInfo | None]:
        """Read the next entry of the directory.

        The end of the directory is reported as a ``FileInfo`` with an empty name.
        If ``rewind`` is set, the directory is rewound instead and no information
        is returned.
        """
        cursor = self._cursor
        result = cursor.obj.validate()
        if result is not FileResult.OK:
            return result, None

        if rewind:
            return cursor.rewind(0), None

        result = cursor.read()
        if result is FileResult.FILE_NOT_EXIST:
            result = FileResult.OK
        if result is not FileResult.OK:
            return result, None

        info = cursor.info()
        result = cursor.next()
        if result is FileResult.FILE_NOT_EXIST:
            result = FileResult.OK
        return result, info

    def close(self) -> FileResult:
        result = self._cursor.obj.validate()
        if result is FileResult.OK:
            self._cursor.obj.volume = None
        return result
