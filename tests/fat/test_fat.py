"""Tests for the ``fat`` module of the ``fat`` package."""

import pytest

from fatfs.base import FileResult
from fatfs.device import SECTOR_SIZE, MemoryDevice
from fatfs.fat.base import CLUSTER_EOC, FatType
from fatfs.fat.fat import CLUSTER_EMPTY
from fatfs.fat.filesystem import VolumeTable


def boundary_clusters(volume):
    """Clusters worth testing: the first and last ones, FAT12 entries spanning a
    sector boundary and both neighbours of them.
    """
    clusters = {2, 3, 4, volume.n_fatent - 2, volume.n_fatent - 1}
    if volume.fs_type is FatType.FAT_12:
        clusters |= {340, 341, 342, 682, 683}  # 341 and 682 span sectors
    return sorted(clusters)


def representable_values(fat_type):
    mask = fat_type.mask
    return [0, 1, 2, 0x123 & mask, mask - 8, mask]


def test_get_blank(volume):
    fat_32 = volume.fs_type is FatType.FAT_32
    for cluster in boundary_clusters(volume):
        if cluster == 2 and fat_32:
            assert volume.fat.get(cluster) == FatType.FAT_32.mask  # root directory
        else:
            assert volume.fat.get(cluster) == CLUSTER_EMPTY


@pytest.mark.parametrize('cluster', [0, 1, -1])
def test_get_put_out_of_range(volume, cluster):
    assert volume.fat.get(cluster) is FileResult.INTERNAL_ERROR
    assert volume.fat.get(volume.n_fatent) is FileResult.INTERNAL_ERROR
    assert volume.fat.put(cluster, 5) is FileResult.INTERNAL_ERROR
    assert volume.fat.put(volume.n_fatent, 5) is FileResult.INTERNAL_ERROR


def test_put_get_round_trip(volume):
    fat = volume.fat
    for cluster in boundary_clusters(volume):
        for value in representable_values(volume.fs_type):
            assert fat.put(cluster, value) is FileResult.OK
            assert fat.get(cluster) == value


def test_put_leaves_neighbours_alone(volume):
    fat = volume.fat
    mask = volume.fs_type.mask
    for cluster in boundary_clusters(volume)[1:-1]:
        fat.put(cluster - 1, 0x0AB & mask)
        fat.put(cluster + 1, 0x0CD & mask)
        fat.put(cluster, mask)
        fat.put(cluster, 0x123)
        assert fat.get(cluster - 1) == 0x0AB & mask
        assert fat.get(cluster + 1) == 0x0CD & mask
        assert fat.get(cluster) == 0x123


def test_put_end_of_chain(volume):
    volume.fat.put(5, CLUSTER_EOC)
    assert volume.fat.get(5) == volume.fs_type.mask
    assert volume.fat.get(5) >= volume.n_fatent


def test_fat32_reserved_bits_preserved(image_builder):
    device = MemoryDevice(image_builder(FatType.FAT_32))
    table = VolumeTable(device)
    volume = table.register()
    assert volume.mount() is FileResult.OK

    offset = volume.fatbase * SECTOR_SIZE + 7 * 4
    device.data[offset : offset + 4] = (0xA0000000).to_bytes(4, 'little')
    volume.window.invalidate()

    assert volume.fat.get(7) == 0
    assert volume.fat.put(7, 0xFFFFFFFF) is FileResult.OK
    assert volume.fat.get(7) == 0x0FFFFFFF
    assert volume.sync() is FileResult.OK
    assert device.data[offset : offset + 4] == b'\xFF\xFF\xFF\xAF'


def test_sync_mirrors_fat(volume, device):
    fat = volume.fat
    for cluster in boundary_clusters(volume):
        fat.put(cluster, 0x155)
    assert volume.sync() is FileResult.OK

    fat_bytes = volume.fsize * SECTOR_SIZE
    first = volume.fatbase * SECTOR_SIZE
    second = first + fat_bytes
    assert device.data[first:second] == device.data[second : second + fat_bytes]


def test_count_free(volume, layout):
    result, free = volume.fat.count_free()
    assert result is FileResult.OK
    if volume.fs_type is FatType.FAT_32:
        assert free == layout.clusters - 1  # root directory
    else:
        assert free == layout.clusters

    volume.fat.put(10, CLUSTER_EOC)
    volume.fat.put(volume.n_fatent - 1, CLUSTER_EOC)
    assert volume.fat.count_free() == (result, free - 2)


def test_len(volume, layout):
    assert len(volume.fat) == layout.clusters + 2
