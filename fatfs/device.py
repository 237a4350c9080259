"""Block device access.

The engine talks to a storage medium only through the ``BlockDevice`` protocol:
sector-granular reads and writes plus status, initialization and control
requests. Sectors are always ``SECTOR_SIZE`` bytes long.
"""

from __future__ import annotations

import logging
import os
from enum import Enum, Flag
from types import TracebackType
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .typing_ import ReadableBuffer, StrPath, WriteableBuffer

__all__ = [
    'SECTOR_SIZE',
    'DiskStatus',
    'DiskResult',
    'DiskControl',
    'BlockDevice',
    'MemoryDevice',
    'ImageDevice',
]


log = logging.getLogger(__name__)


SECTOR_SIZE = 512
BLOCK_SIZE = 1  # erase block size in sectors, unknown for plain images


if hasattr(os, 'pread') and hasattr(os, 'pwrite'):
    _read = os.pread
    _write = os.pwrite
else:

    def _read(fd: int, size: int, pos: int) -> bytes:
        """Read ``size`` bytes from file descriptor ``fd`` starting at byte ``pos``."""
        os.lseek(fd, pos, os.SEEK_SET)
        return os.read(fd, size)

    def _write(fd: int, b: ReadableBuffer, pos: int) -> int:
        """Write raw bytes ``b`` to file descriptor ``fd`` starting at byte ``pos``."""
        os.lseek(fd, pos, os.SEEK_SET)
        return os.write(fd, b)


class DiskStatus(Flag):
    """Status bits of a physical drive."""

    OK = 0
    NOINIT = 0x01  # drive not initialized
    NODISK = 0x02  # no medium in the drive
    PROTECT = 0x04  # write protected


class DiskResult(Enum):
    """Result of a sector transfer or control request."""

    OK = 0
    ERROR = 1
    WRITE_PROTECTED = 2
    NOT_READY = 3
    INVALID_PARAMETER = 4


class DiskControl(Enum):
    """Control requests accepted by ``BlockDevice.control()``."""

    SYNC = 0
    GET_SECTOR_COUNT = 1
    GET_SECTOR_SIZE = 2
    GET_BLOCK_SIZE = 3
    TRIM = 4


class BlockDevice(Protocol):
    """Sector-granular storage medium.

    ``drive`` selects the physical drive for devices serving more than one.
    """

    def status(self, drive: int) -> DiskStatus:
        ...

    def initialize(self, drive: int) -> DiskStatus:
        ...

    def read(
        self, drive: int, buffer: WriteableBuffer, sector: int, count: int
    ) -> DiskResult:
        """Read ``count`` sectors starting at ``sector`` into ``buffer``."""
        ...

    def write(
        self, drive: int, buffer: ReadableBuffer, sector: int, count: int
    ) -> DiskResult:
        """Write ``count`` sectors from ``buffer`` starting at ``sector``."""
        ...

    def control(self, drive: int, code: DiskControl) -> tuple[DiskResult, int]:
        """Execute a control request, returning its result and a value (if any)."""
        ...


class _SectorDevice:
    """Shared bookkeeping of the devices shipped with ``fatfs``.

    Subclasses implement ``_read_at()``, ``_write_at()`` and ``_flush()`` working
    on byte offsets.
    """

    def __init__(self, size: int, writable: bool):
        if size % SECTOR_SIZE != 0:
            raise ValueError(f'Device size must be a multiple of {SECTOR_SIZE} bytes')
        self._sectors = size // SECTOR_SIZE
        self._writable = writable
        self._initialized = False

    def _check_range(self, drive: int, sector: int, count: int) -> bool:
        return drive == 0 and count > 0 and 0 <= sector <= self._sectors - count

    def _read_at(self, pos: int, size: int) -> bytes:
        raise NotImplementedError

    def _write_at(self, pos: int, b: bytes) -> None:
        raise NotImplementedError

    def _flush(self) -> None:
        pass

    def status(self, drive: int) -> DiskStatus:
        if drive != 0:
            return DiskStatus.NOINIT | DiskStatus.NODISK
        status = DiskStatus.OK
        if not self._initialized:
            status |= DiskStatus.NOINIT
        if not self._writable:
            status |= DiskStatus.PROTECT
        return status

    def initialize(self, drive: int) -> DiskStatus:
        if drive == 0:
            self._initialized = True
        return self.status(drive)

    def eject(self) -> None:
        """Drop the initialized state, as if the medium was removed and reinserted."""
        self._initialized = False

    def read(
        self, drive: int, buffer: WriteableBuffer, sector: int, count: int
    ) -> DiskResult:
        if not self._initialized:
            return DiskResult.NOT_READY
        if not self._check_range(drive, sector, count):
            return DiskResult.INVALID_PARAMETER

        size = count * SECTOR_SIZE
        with memoryview(buffer) as view:
            if view.nbytes < size:
                return DiskResult.INVALID_PARAMETER
            view.cast('B')[:size] = self._read_at(sector * SECTOR_SIZE, size)
        return DiskResult.OK

    def write(
        self, drive: int, buffer: ReadableBuffer, sector: int, count: int
    ) -> DiskResult:
        if not self._initialized:
            return DiskResult.NOT_READY
        if not self._writable:
            return DiskResult.WRITE_PROTECTED
        if not self._check_range(drive, sector, count):
            return DiskResult.INVALID_PARAMETER

        size = count * SECTOR_SIZE
        with memoryview(buffer) as view:
            if view.nbytes < size:
                return DiskResult.INVALID_PARAMETER
            self._write_at(sector * SECTOR_SIZE, bytes(view.cast('B')[:size]))
        return DiskResult.OK

    def control(self, drive: int, code: DiskControl) -> tuple[DiskResult, int]:
        if drive != 0:
            return DiskResult.INVALID_PARAMETER, 0
        if not self._initialized:
            return DiskResult.NOT_READY, 0

        if code is DiskControl.SYNC:
            self._flush()
            return DiskResult.OK, 0
        if code is DiskControl.GET_SECTOR_COUNT:
            return DiskResult.OK, self._sectors
        if code is DiskControl.GET_SECTOR_SIZE:
            return DiskResult.OK, SECTOR_SIZE
        if code is DiskControl.GET_BLOCK_SIZE:
            return DiskResult.OK, BLOCK_SIZE
        # Trimming is a hint only
        return DiskResult.OK, 0

    @property
    def sectors(self) -> int:
        """Number of sectors of the device."""
        return self._sectors

    @property
    def writable(self) -> bool:
        return self._writable


class MemoryDevice(_SectorDevice):
    """Block device backed by a ``bytearray``.

    ``data`` is used as is (not copied) if it is a ``bytearray``, so changes made
    through the device are visible to the caller.
    """

    def __init__(self, data: bytearray | bytes | int, *, readonly: bool = False):
        if isinstance(data, int):
            data = bytearray(data)
        elif not isinstance(data, bytearray):
            data = bytearray(data)
        super().__init__(len(data), not readonly)
        self._data = data

    def _read_at(self, pos: int, size: int) -> bytes:
        return bytes(self._data[pos : pos + size])

    def _write_at(self, pos: int, b: bytes) -> None:
        self._data[pos : pos + len(b)] = b

    @property
    def data(self) -> bytearray:
        """Underlying buffer."""
        return self._data

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(sectors={self._sectors})'


class ImageDevice(_SectorDevice):
    """Block device backed by a disk image file.

    Do not use ``__init__`` directly, use ``ImageDevice.open()`` or
    ``ImageDevice.new()`` instead.
    """

    def __init__(self, fd: int, path: StrPath, size: int, writable: bool):
        super().__init__(size, writable)
        self._fd = fd
        self._path = str(path)
        self._closed = False
        log.info(f'Opened image {self}')
        log.info(f'{self} - Size: {size} bytes, {self._sectors} sectors')

    @classmethod
    def new(cls, path: StrPath, size: int) -> ImageDevice:
        """Create a new zeroed image of ``size`` bytes at ``path``."""
        if size <= 0:
            raise ValueError('Image size must be greater than 0')

        flags = os.O_CREAT | os.O_EXCL | os.O_RDWR | getattr(os, 'O_BINARY', 0)
        fd = os.open(path, flags, 0o666)
        try:
            os.truncate(fd, size)
            return cls(fd, path, size, True)
        except BaseException:
            os.close(fd)
            raise

    @classmethod
    def open(cls, path: StrPath, *, readonly: bool = False) -> ImageDevice:
        """Open the disk image at ``path``."""
        read_write_flag = os.O_RDONLY if readonly else os.O_RDWR
        flags = read_write_flag | getattr(os, 'O_BINARY', 0)
        fd = os.open(path, flags)

        try:
            size = os.fstat(fd).st_size
            return cls(fd, path, size, not readonly)
        except BaseException:
            os.close(fd)
            raise

    def check_closed(self) -> None:
        if self._closed:
            raise ValueError('I/O operation on closed image')

    def _read_at(self, pos: int, size: int) -> bytes:
        self.check_closed()
        b = _read(self._fd, size, pos)
        if len(b) != size:
            raise ValueError(
                f'Did not read the expected amount of bytes (expected {size} bytes, '
                f'got {len(b)} bytes)'
            )
        return b

    def _write_at(self, pos: int, b: bytes) -> None:
        self.check_closed()
        bytes_written = _write(self._fd, b, pos)
        if bytes_written != len(b):
            raise ValueError(
                f'Did not write the expected amount of bytes (expected {len(b)} '
                f'bytes, wrote {bytes_written} bytes)'
            )

    def _flush(self) -> None:
        self.check_closed()
        os.fsync(self._fd)

    def close(self) -> None:
        """Close the image. Calling this more than once has no effect."""
        if self._closed:
            return
        os.close(self._fd)
        self._closed = True
        self._initialized = False
        log.info(f'Closed image {self}')

    def __enter__(self) -> ImageDevice:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __str__(self) -> str:
        return self._path

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._path!r})'
