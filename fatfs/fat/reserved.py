"""Structures found in the reserved region of a FAT file system and in the MBR."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from typing_extensions import Annotated

from ..base import ValidationError, ValidationWarning, is_power_of_two
from ..bytestruct import ByteStruct
from ..device import SECTOR_SIZE
from .base import FatType

if TYPE_CHECKING:
    from .window import SectorWindow

__all__ = [
    'BootSectorStart',
    'Bpb',
    'EbpbFat',
    'EbpbFat32',
    'FsInfo',
    'PartitionEntry',
    'BootSectorKind',
    'VolumeGeometry',
    'check_boot_sector',
    'partition_starts',
    'FS_INFO_UNKNOWN',
]


log = logging.getLogger(__name__)


JUMP_INSTRUCTIONS = (0xE9, 0xEB, 0xE8)
FILE_SYSTEM_TYPE_OFFSET = 54
FILE_SYSTEM_TYPE_OFFSET_FAT32 = 82
FILE_SYSTEM_TYPE_FAT = b'FAT'
FILE_SYSTEM_TYPE_FAT32 = b'FAT32'
SIGNATURE = b'\x55\xaa'
SIGNATURE_OFFSET = 510
FAT32_VERSION = 0
MEDIA_TYPES = (0xF0, *range(0xF8, 0x100))

# MBR partition table
PARTITION_TABLE_OFFSET = 446
PARTITION_ENTRIES = 4

# FS info sector
FS_INFO_SECTOR = 1
FS_INFO_SIGNATURE_1 = b'RRaA'
FS_INFO_SIGNATURE_2 = b'rrAa'
FS_INFO_UNKNOWN = 0xFFFFFFFF

DIRECTORY_ENTRY_SIZE = 32


@dataclass(frozen=True)
class BootSectorStart(ByteStruct):

    jump_instruction: Annotated[bytes, 3]
    oem_name: Annotated[bytes, 8]


@dataclass(frozen=True)
class Bpb(ByteStruct):
    """BIOS parameter block shared by all FAT types (DOS 3.31 layout)."""

    start: BootSectorStart
    lss: Annotated[int, 2]
    cluster_size: Annotated[int, 1]
    reserved_size: Annotated[int, 2]
    fat_count: Annotated[int, 1]
    rootdir_entries: Annotated[int, 2]  # 0 for FAT32
    total_size_200: Annotated[int, 2]
    media_type: Annotated[int, 1]
    fat_size_200: Annotated[int, 2]  # 0 for FAT32
    sectors_per_track: Annotated[int, 2]
    heads: Annotated[int, 2]
    hidden_before_partition: Annotated[int, 4]
    total_size_331: Annotated[int, 4]

    @property
    def total_size(self) -> int:
        return self.total_size_200 or self.total_size_331


@dataclass(frozen=True)
class EbpbFat(ByteStruct):
    """FAT12 and FAT16 extended BIOS parameter block, found right after the BPB."""

    physical_drive_number: Annotated[int, 1]
    reserved: Annotated[int, 1]
    extended_boot_signature: Annotated[int, 1]
    volume_id: Annotated[int, 4]
    volume_label: Annotated[bytes, 11]
    file_system_type: Annotated[bytes, 8]


@dataclass(frozen=True)
class EbpbFat32(ByteStruct):
    """FAT32 extended BIOS parameter block, found right after the BPB."""

    fat_size_32: Annotated[int, 4]
    mirroring_flags: Annotated[int, 2]
    version: Annotated[int, 2]
    rootdir_start_cluster: Annotated[int, 4]
    fsinfo_sector: Annotated[int, 2]
    boot_sector_backup_start: Annotated[int, 2]
    reserved_1: Annotated[bytes, 12]
    physical_drive_number: Annotated[int, 1]
    reserved_2: Annotated[int, 1]
    extended_boot_signature: Annotated[int, 1]
    volume_id: Annotated[int, 4]
    volume_label: Annotated[bytes, 11]
    file_system_type: Annotated[bytes, 8]


@dataclass(frozen=True)
class FsInfo(ByteStruct):
    """FS information sector (FAT32 only)."""

    signature_1: Annotated[bytes, 4]
    reserved_1: Annotated[bytes, 480]
    signature_2: Annotated[bytes, 4]
    free_clusters: Annotated[int, 4]
    last_allocated_cluster: Annotated[int, 4]
    reserved_2: Annotated[bytes, 12]
    signature_3: Annotated[bytes, 4]

    def validate(self) -> None:
        if self.signature_1 != FS_INFO_SIGNATURE_1:
            raise ValidationError(
                f'Invalid first FS information sector signature {self.signature_1!r}'
            )
        if self.signature_2 != FS_INFO_SIGNATURE_2:
            raise ValidationError(
                f'Invalid second FS information sector signature {self.signature_2!r}'
            )
        if self.signature_3[2:] != SIGNATURE:
            raise ValidationError(
                f'Invalid third FS information sector signature {self.signature_3!r}'
            )

    @classmethod
    def new(cls, free_clusters: int, last_allocated_cluster: int) -> FsInfo:
        return cls(
            FS_INFO_SIGNATURE_1,
            bytes(480),
            FS_INFO_SIGNATURE_2,
            free_clusters,
            last_allocated_cluster,
            bytes(12),
            b'\x00\x00' + SIGNATURE,
        )


@dataclass(frozen=True)
class PartitionEntry(ByteStruct):
    """Entry of the MBR partition table."""

    boot_indicator: Annotated[int, 1]
    chs_start: Annotated[bytes, 3]
    system: Annotated[int, 1]
    chs_end: Annotated[bytes, 3]
    start_lba: Annotated[int, 4]
    size_lba: Annotated[int, 4]

    @property
    def used(self) -> bool:
        return self.system != 0


class BootSectorKind(Enum):
    """Outcome of probing a sector for a FAT boot sector."""

    FAT = 0
    NOT_FAT = 2  # valid boot sector, but not FAT
    NOT_BOOT = 3
    DISK_ERROR = 4


def check_boot_sector(window: SectorWindow, sector: int) -> BootSectorKind:
    """Load ``sector`` into ``window`` and check whether it is a FAT boot sector.

    The window is invalidated first, so whatever it held before is discarded.
    """
    window.invalidate()
    if not window.move(sector).ok:
        return BootSectorKind.DISK_ERROR

    b = window.buffer
    if b[SIGNATURE_OFFSET : SIGNATURE_OFFSET + 2] != SIGNATURE:
        return BootSectorKind.NOT_BOOT

    if b[0] in JUMP_INSTRUCTIONS:
        fs_type = b[FILE_SYSTEM_TYPE_OFFSET : FILE_SYSTEM_TYPE_OFFSET + 3]
        if fs_type == FILE_SYSTEM_TYPE_FAT:
            return BootSectorKind.FAT
        offset = FILE_SYSTEM_TYPE_OFFSET_FAT32
        if b[offset : offset + 5] == FILE_SYSTEM_TYPE_FAT32:
            return BootSectorKind.FAT
    return BootSectorKind.NOT_FAT


def partition_starts(mbr: bytes | bytearray) -> list[int]:
    """Return the start sectors of the four MBR partition table entries.

    Unused entries are reported with start sector 0.
    """
    starts = []
    for i in range(PARTITION_ENTRIES):
        offset = PARTITION_TABLE_OFFSET + i * len(PartitionEntry)
        entry = PartitionEntry.from_buffer(mbr, offset)
        starts.append(entry.start_lba if entry.used else 0)
    return starts


@dataclass(frozen=True)
class VolumeGeometry:
    """Layout of a FAT volume as derived from its boot sector.

    All sector numbers are absolute, i.e. relative to the start of the device.
    ``dirbase`` is the start sector of the root directory for FAT12 and FAT16 and
    the start cluster of the root directory for FAT32.
    """

    fat_type: FatType
    volbase: int
    fatbase: int
    dirbase: int
    database: int
    n_fats: int
    csize: int
    n_rootdir: int
    n_fatent: int
    fsize: int
    fsinfo_sector: int
    volume_id: int
    volume_label: bytes

    @classmethod
    def from_boot_sector(cls, b: bytes | bytearray, base: int = 0) -> VolumeGeometry:
        """Derive the volume layout from the boot sector ``b`` located at ``base``.

        Raises ``ValidationError`` describing the first violated rule if the boot
        sector does not describe a usable FAT volume.
        """
        if len(b) != SECTOR_SIZE:
            raise ValueError(
                f'Boot sector must be {SECTOR_SIZE} bytes long, got {len(b)} bytes'
            )
        bpb = Bpb.from_buffer(b)
        ebpb_32 = EbpbFat32.from_buffer(b, len(Bpb))

        if bpb.lss != SECTOR_SIZE:
            raise ValidationError(f'Logical sector size must be {SECTOR_SIZE}')

        fat_size = bpb.fat_size_200 or ebpb_32.fat_size_32
        if bpb.fat_count not in (1, 2):
            raise ValidationError('FAT count must be 1 or 2')
        if bpb.cluster_size == 0 or not is_power_of_two(bpb.cluster_size):
            raise ValidationError('Cluster size must be a power of 2')
        if (bpb.rootdir_entries * DIRECTORY_ENTRY_SIZE) % SECTOR_SIZE != 0:
            raise ValidationError(
                'Root directory entries must align with logical sector size'
            )

        total_size = bpb.total_size
        if bpb.reserved_size == 0:
            raise ValidationError('Reserved sector count must be greater than 0')
        if bpb.media_type not in MEDIA_TYPES:
            warnings.warn(
                f'Unknown media type {bpb.media_type:#04x}; this might lead some '
                f'systems to refuse to recognize the file system',
                ValidationWarning,
            )

        rootdir_sectors = bpb.rootdir_entries * DIRECTORY_ENTRY_SIZE // SECTOR_SIZE
        system_size = bpb.reserved_size + fat_size * bpb.fat_count + rootdir_sectors
        if total_size < system_size:
            raise ValidationError('Total size is smaller than the system area')

        clusters = (total_size - system_size) // bpb.cluster_size
        if clusters == 0:
            raise ValidationError('Volume must contain at least one cluster')
        try:
            fat_type = FatType.from_cluster_count(clusters)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        n_fatent = clusters + 2
        fatbase = base + bpb.reserved_size
        fsinfo_sector = 0

        if fat_type is FatType.FAT_32:
            if ebpb_32.version != FAT32_VERSION:
                raise ValidationError(f'Invalid FAT32 version {ebpb_32.version}')
            if bpb.rootdir_entries != 0:
                raise ValidationError('Root directory entry count must be 0')
            dirbase = ebpb_32.rootdir_start_cluster
            fat_bytes = n_fatent * 4
            fsinfo_sector = ebpb_32.fsinfo_sector
            volume_id = ebpb_32.volume_id
            volume_label = ebpb_32.volume_label
        else:
            if bpb.rootdir_entries == 0:
                raise ValidationError(
                    'Root directory entry count must be greater than 0'
                )
            dirbase = fatbase + fat_size * bpb.fat_count
            if fat_type is FatType.FAT_16:
                fat_bytes = n_fatent * 2
            else:
                fat_bytes = n_fatent * 3 // 2 + (n_fatent & 1)
            ebpb = EbpbFat.from_buffer(b, len(Bpb))
            volume_id = ebpb.volume_id
            volume_label = ebpb.volume_label

        if fat_size < (fat_bytes + SECTOR_SIZE - 1) // SECTOR_SIZE:
            raise ValidationError(
                f'FAT is too small for total cluster number {clusters}'
            )

        return cls(
            fat_type=fat_type,
            volbase=base,
            fatbase=fatbase,
            dirbase=dirbase,
            database=base + system_size,
            n_fats=bpb.fat_count,
            csize=bpb.cluster_size,
            n_rootdir=bpb.rootdir_entries,
            n_fatent=n_fatent,
            fsize=fat_size,
            fsinfo_sector=fsinfo_sector,
            volume_id=volume_id,
            volume_label=volume_label,
        )
