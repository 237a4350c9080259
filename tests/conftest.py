"""Fixtures used across the test suite."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from shutil import rmtree
from tempfile import mkdtemp, mkstemp
from typing import NamedTuple

import pytest

from fatfs.device import SECTOR_SIZE, MemoryDevice
from fatfs.fat.base import FatType
from fatfs.fat.directory import Attributes, DirectoryEntry
from fatfs.fat.filesystem import VolumeTable
from fatfs.fat.reserved import (
    Bpb,
    BootSectorStart,
    EbpbFat,
    EbpbFat32,
    FsInfo,
    PartitionEntry,
)
from fatfs.filesystem import FatFileSystem

CLOCK_TIME = datetime(2021, 6, 15, 12, 30, 42)
PARTITION_START = 63
VOLUME_ID = 0x1234ABCD


def fixed_clock() -> datetime:
    return CLOCK_TIME


class Layout(NamedTuple):
    """Parameters of a blank test volume."""

    total_size: int
    reserved_size: int
    rootdir_entries: int
    cluster_size: int
    fat_size: int

    @property
    def rootdir_sectors(self) -> int:
        return self.rootdir_entries * 32 // SECTOR_SIZE

    @property
    def system_size(self) -> int:
        return self.reserved_size + 2 * self.fat_size + self.rootdir_sectors

    @property
    def clusters(self) -> int:
        return (self.total_size - self.system_size) // self.cluster_size


LAYOUTS = {
    FatType.FAT_12: Layout(2880, 1, 224, 1, 9),
    FatType.FAT_16: Layout(32768, 1, 512, 4, 32),
    FatType.FAT_32: Layout(67064, 32, 0, 1, 520),
}

FAT_START = {
    FatType.FAT_12: b'\xF8\xFF\xFF',
    FatType.FAT_16: b'\xF8\xFF\xFF\xFF',
    # Including the root directory in cluster 2
    FatType.FAT_32: b'\xF8\xFF\xFF\x0F\xFF\xFF\xFF\x0F\xFF\xFF\xFF\x0F',
}


def boot_sector(fat_type: FatType, hidden: int = 0, label: bytes = b'NO NAME    '):
    """Return the boot sector of a blank volume of type ``fat_type``."""
    layout = LAYOUTS[fat_type]
    fat_32 = fat_type is FatType.FAT_32
    small = layout.total_size < 0x10000

    b = bytearray(SECTOR_SIZE)
    bpb = Bpb(
        start=BootSectorStart(b'\xEB\x3C\x90', b'MSWIN4.1'),
        lss=SECTOR_SIZE,
        cluster_size=layout.cluster_size,
        reserved_size=layout.reserved_size,
        fat_count=2,
        rootdir_entries=layout.rootdir_entries,
        total_size_200=layout.total_size if small else 0,
        media_type=0xF8,
        fat_size_200=0 if fat_32 else layout.fat_size,
        sectors_per_track=63,
        heads=255,
        hidden_before_partition=hidden,
        total_size_331=0 if small else layout.total_size,
    )
    bpb.pack_into(b)

    if fat_32:
        ebpb_32 = EbpbFat32(
            fat_size_32=layout.fat_size,
            mirroring_flags=0,
            version=0,
            rootdir_start_cluster=2,
            fsinfo_sector=1,
            boot_sector_backup_start=6,
            reserved_1=bytes(12),
            physical_drive_number=0x80,
            reserved_2=0,
            extended_boot_signature=0x29,
            volume_id=VOLUME_ID,
            volume_label=label,
            file_system_type=b'FAT32   ',
        )
        ebpb_32.pack_into(b, len(Bpb))
    else:
        ebpb = EbpbFat(
            physical_drive_number=0x80,
            reserved=0,
            extended_boot_signature=0x29,
            volume_id=VOLUME_ID,
            volume_label=label,
            file_system_type=f'{fat_type}   '.encode('ascii'),
        )
        ebpb.pack_into(b, len(Bpb))

    b[510:512] = b'\x55\xAA'
    return b


def build_image(
    fat_type: FatType,
    *,
    label: bytes | None = None,
    partitioned: bool = False,
    fsinfo: bool = True,
) -> bytearray:
    """Build a blank FAT volume of type ``fat_type`` in memory.

    If ``label`` is given, a volume label entry is placed in the root directory. If
    ``partitioned`` is set, the volume is placed in the first partition of an MBR.
    """
    layout = LAYOUTS[fat_type]
    base = PARTITION_START if partitioned else 0
    image = bytearray((base + layout.total_size) * SECTOR_SIZE)

    def sector_offset(sector: int) -> int:
        return (base + sector) * SECTOR_SIZE

    if partitioned:
        entry = PartitionEntry(
            boot_indicator=0,
            chs_start=b'\x00\x00\x00',
            system=0x06,
            chs_end=b'\x00\x00\x00',
            start_lba=base,
            size_lba=layout.total_size,
        )
        entry.pack_into(image, 446)
        image[510:512] = b'\x55\xAA'

    start = sector_offset(0)
    image[start : start + SECTOR_SIZE] = boot_sector(
        fat_type, base, label or b'NO NAME    '
    )

    for i in range(2):
        fat = sector_offset(layout.reserved_size + i * layout.fat_size)
        fat_start = FAT_START[fat_type]
        image[fat : fat + len(fat_start)] = fat_start

    if fat_type is FatType.FAT_32:
        if fsinfo:
            start = sector_offset(1)
            info = FsInfo.new(layout.clusters - 1, 2)
            image[start : start + SECTOR_SIZE] = bytes(info)
        rootdir = sector_offset(layout.system_size)
    else:
        rootdir = sector_offset(layout.reserved_size + 2 * layout.fat_size)

    if label is not None:
        DirectoryEntry.new(label, Attributes.VOLUME_LABEL).pack_into(image, rootdir)
    return image


@pytest.fixture
def image_builder():
    """Fixture providing ``build_image()`` to tests needing custom images."""
    return build_image


@pytest.fixture(params=list(LAYOUTS), ids=str)
def fat_type(request) -> FatType:
    """Fixture parametrizing a test over all FAT types."""
    return request.param


@pytest.fixture
def layout(fat_type) -> Layout:
    return LAYOUTS[fat_type]


@pytest.fixture
def image(fat_type) -> bytearray:
    return build_image(fat_type)


@pytest.fixture
def device(image) -> MemoryDevice:
    """Fixture providing a ``MemoryDevice`` holding a blank volume of every FAT
    type.
    """
    return MemoryDevice(image)


@pytest.fixture
def table(device) -> VolumeTable:
    """Fixture providing a ``VolumeTable`` with drive 0 registered on ``device``."""
    t = VolumeTable(device, clock=fixed_clock)
    t.register(0)
    return t


@pytest.fixture
def volume(table):
    """Fixture providing the mounted ``FatVolume`` of drive 0 of ``table``."""
    result = table.mount()
    assert result.ok
    return table[0]


@pytest.fixture
def fs(device) -> FatFileSystem:
    """Fixture providing a mounted ``FatFileSystem`` on ``device``."""
    f = FatFileSystem(device, clock=fixed_clock)
    f.mount()
    return f


@pytest.fixture
def tempdir():
    """Fixture providing a new temporary directory for testing purposes.

    Returns a ``pathlib.Path`` object representing the path of the temporary directory.
    """
    path = Path(mkdtemp())
    yield path
    rmtree(path)  # clean up


@pytest.fixture
def tempfile():
    """Fixture providing a new temporary file for testing purposes.

    Returns a ``pathlib.Path`` object representing the path of the temporary file.
    """
    fd, path_str = mkstemp()
    os.close(fd)  # we are going to use a Path object instead
    path = Path(path_str)
    yield path
    path.unlink(missing_ok=True)  # clean up
