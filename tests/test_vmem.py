import pytest

from hive.pmem import PAGESIZE
from hive.vmem import PageSize, VmemRegion, map_region


class Recorder:
    def __init__(self, fail_after=None):
        self.calls = []
        self.fail_after = fail_after

    def __call__(self, vma, pma, prot, page_size):
        if self.fail_after is not None and len(self.calls) >= self.fail_after:
            raise OSError("mapping failed")
        self.calls.append((vma, pma, prot, page_size))


def test_aligned_region_maps_each_page():
    rec = Recorder()
    region = VmemRegion(vma=10 * PAGESIZE, pma=3 * PAGESIZE, length=4 * PAGESIZE)
    assert map_region(rec, region, 7) == 4
    assert [c[0] for c in rec.calls] == [(10 + i) * PAGESIZE for i in range(4)]
    assert [c[1] for c in rec.calls] == [(3 + i) * PAGESIZE for i in range(4)]
    assert all(c[2] == 7 for c in rec.calls)
    assert all(c[3] is PageSize.PAGE_4K for c in rec.calls)


def test_unaligned_bases_are_rounded_down():
    rec = Recorder()
    region = VmemRegion(vma=5 * PAGESIZE + 17, pma=2 * PAGESIZE + 99, length=PAGESIZE)
    assert map_region(rec, region, 0) == 1
    vma, pma, _, _ = rec.calls[0]
    assert vma == 5 * PAGESIZE
    assert pma == 2 * PAGESIZE


def test_length_is_rounded_up():
    rec = Recorder()
    region = VmemRegion(vma=0, pma=0, length=PAGESIZE + 1)
    assert map_region(rec, region, 0) == 2
    assert len(rec.calls) == 2


def test_zero_length_maps_nothing():
    rec = Recorder()
    assert map_region(rec, VmemRegion(vma=0, pma=0, length=0), 0) == 0
    assert rec.calls == []


def test_offsets_stay_in_step():
    rec = Recorder()
    region = VmemRegion(vma=100 * PAGESIZE, pma=40 * PAGESIZE, length=6 * PAGESIZE)
    map_region(rec, region, 1)
    assert {vma - pma for vma, pma, _, _ in rec.calls} == {60 * PAGESIZE}
    assert all(vma % PAGESIZE == 0 and pma % PAGESIZE == 0 for vma, pma, _, _ in rec.calls)


def test_mapper_error_stops_mapping():
    rec = Recorder(fail_after=2)
    region = VmemRegion(vma=0, pma=0, length=5 * PAGESIZE)
    with pytest.raises(OSError):
        map_region(rec, region, 0)
    assert len(rec.calls) == 2


def test_missing_region_rejected():
    with pytest.raises(ValueError):
        map_region(Recorder(), None, 0)


def test_missing_mapper_rejected():
    with pytest.raises(ValueError):
        map_region(None, VmemRegion(vma=0, pma=0, length=PAGESIZE), 0)


def test_mapped_page_step_matches_page_size_bytes():
    rec = Recorder()
    map_region(rec, VmemRegion(vma=0, pma=0, length=3 * PAGESIZE), 0)
    page_size = rec.calls[0][3]
    assert int(page_size) == 0
    assert rec.calls[1][0] - rec.calls[0][0] == page_size.bytes == PAGESIZE
    assert PageSize.PAGE_2M.bytes == 512 * page_size.bytes
    assert PageSize.PAGE_1G.bytes == 512 * PageSize.PAGE_2M.bytes
    assert [int(p) for p in PageSize] == [0, 1, 2]