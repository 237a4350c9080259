"""Tests for the ``chain`` module of the ``fat`` package."""

import pytest

from fatfs.base import FileResult
from fatfs.device import SECTOR_SIZE, MemoryDevice
from fatfs.fat.base import CLUSTER_EOC, FatType
from fatfs.fat.chain import (
    ChainResult,
    ChainStatus,
    clear_cluster,
    cluster_to_sector,
    create_chain,
    remove_chain,
)
from fatfs.fat.filesystem import VolumeTable


def mounted_volume(image):
    table = VolumeTable(MemoryDevice(image))
    volume = table.register()
    assert volume.mount() is FileResult.OK
    return volume


def known_free(volume):
    """Make sure the free cluster count of ``volume`` is known and return it."""
    result, free = volume.fat.count_free()
    assert result is FileResult.OK
    volume.free_clst = free
    return free


def build_chain(volume, length):
    chain = []
    cluster = 0
    for _ in range(length):
        allocated = create_chain(volume, cluster)
        assert allocated.ok
        cluster = allocated.cluster
        chain.append(cluster)
    return chain


def walk(volume, cluster):
    chain = [cluster]
    while True:
        cluster = volume.fat.get(cluster)
        if cluster >= volume.n_fatent:
            return chain
        chain.append(cluster)


def test_chain_result():
    allocated = ChainResult.allocated(5)
    assert allocated.ok
    assert allocated.cluster == 5
    assert allocated.result is FileResult.OK

    full = ChainResult(ChainStatus.DISK_FULL)
    assert not full.ok
    assert full.result is FileResult.OK
    assert ChainResult.from_result(FileResult.DISK_ERROR).result is (
        FileResult.DISK_ERROR
    )
    assert ChainResult.from_result(FileResult.INTERNAL_ERROR).status is (
        ChainStatus.INTERNAL_ERROR
    )


def test_cluster_to_sector(volume):
    sectors = set()
    for cluster in range(2, volume.n_fatent):
        sector = cluster_to_sector(volume, cluster)
        assert sector >= volume.database
        sectors.add(sector)
    assert len(sectors) == volume.n_fatent - 2
    assert cluster_to_sector(volume, 2) == volume.database
    assert cluster_to_sector(volume, 3) == volume.database + volume.csize


@pytest.mark.parametrize('offset', [-3, -2, -1, 0, 1, 2])
def test_cluster_to_sector_invalid(volume, offset):
    cluster = offset + 2 if offset < 0 else volume.n_fatent + offset
    assert cluster_to_sector(volume, cluster) == 0


def test_create_chain_contiguous(volume):
    chain = build_chain(volume, 5)
    assert chain == list(range(chain[0], chain[0] + 5))
    assert walk(volume, chain[0]) == chain
    assert volume.last_clst == chain[-1]


def test_create_chain_follows_existing_link(volume):
    chain = build_chain(volume, 3)
    free = volume.free_clst
    followed = create_chain(volume, chain[0])
    assert followed.ok
    assert followed.cluster == chain[1]
    assert volume.free_clst == free


def test_create_chain_invalid_cluster(volume):
    volume.fat.put(10, 1)
    assert create_chain(volume, 10).status is ChainStatus.INTERNAL_ERROR
    assert create_chain(volume, 11).status is ChainStatus.INTERNAL_ERROR  # free


def test_create_chain_skips_used_clusters(volume):
    first = build_chain(volume, 1)[0]
    volume.fat.put(first + 1, CLUSTER_EOC)  # taken by someone else
    second = create_chain(volume, first)
    assert second.ok
    assert second.cluster not in (first, first + 1)
    assert walk(volume, first) == [first, second.cluster]


def test_create_chain_known_full(volume):
    volume.free_clst = 0
    assert create_chain(volume, 0).status is ChainStatus.DISK_FULL


@pytest.mark.parametrize('fat_type', [FatType.FAT_12, FatType.FAT_16], ids=str)
def test_create_chain_until_full(image_builder, fat_type):
    """Extending a chain never revisits a cluster and ends with a full disk once
    there are no free clusters left.
    """
    volume = mounted_volume(image_builder(fat_type))
    free = known_free(volume)

    seen = set()
    cluster = 0
    while True:
        allocated = create_chain(volume, cluster)
        if allocated.status is ChainStatus.DISK_FULL:
            break
        assert allocated.ok
        assert allocated.cluster not in seen
        seen.add(allocated.cluster)
        cluster = allocated.cluster

    assert len(seen) == free
    assert volume.free_clst == 0
    assert volume.fat.count_free() == (FileResult.OK, 0)


def test_create_chain_wraps_around(image_builder):
    """A scan starting at the last allocated cluster finds free clusters before it."""
    volume = mounted_volume(image_builder(FatType.FAT_12))
    for cluster in range(2, volume.n_fatent):
        if cluster != 100:
            volume.fat.put(cluster, CLUSTER_EOC)
    volume.last_clst = 2000

    allocated = create_chain(volume, 0)
    assert allocated.ok
    assert allocated.cluster == 100


@pytest.mark.parametrize('length', [1, 2, 7])
def test_remove_chain(volume, length):
    free = known_free(volume)
    chain = build_chain(volume, length)
    assert volume.free_clst == free - length

    assert remove_chain(volume, chain[0]) is FileResult.OK
    assert volume.free_clst == free
    assert volume.fat.count_free() == (FileResult.OK, free)
    for cluster in chain:
        assert volume.fat.get(cluster) == 0


def test_remove_chain_truncate(volume):
    free = known_free(volume)
    chain = build_chain(volume, 4)
    assert remove_chain(volume, chain[2], previous=chain[1]) is FileResult.OK
    assert walk(volume, chain[0]) == chain[:2]
    assert volume.free_clst == free - 2


@pytest.mark.parametrize('cluster', [0, 1])
def test_remove_chain_invalid(volume, cluster):
    assert remove_chain(volume, cluster) is FileResult.INTERNAL_ERROR


def test_clear_cluster(volume, device):
    cluster = build_chain(volume, 1)[0]
    sector = cluster_to_sector(volume, cluster)
    start = sector * SECTOR_SIZE
    end = start + volume.csize * SECTOR_SIZE
    device.data[start:end] = b'\xAA' * (end - start)

    assert clear_cluster(volume, cluster) is FileResult.OK
    assert device.data[start:end] == bytes(end - start)
    assert volume.window.sector == sector
    assert not volume.window.dirty


def test_clear_cluster_invalid(volume):
    assert clear_cluster(volume, 1) is FileResult.INTERNAL_ERROR
