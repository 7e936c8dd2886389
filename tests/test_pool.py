import pytest

from hive.pmem import PAGESIZE, MemEntry, MemType, PhysicalMemory
from hive.pool import Pool

KERNEL_BASE = 0xFFFF800000000000
POOL_BYTES = 0x10000


def make_pmem(length=0x100000):
    return PhysicalMemory(
        [
            MemEntry(0, 0x1000, MemType.RESERVED),
            MemEntry(0x100000, length, MemType.USABLE),
        ],
        KERNEL_BASE,
    )


@pytest.fixture
def setup():
    pmem = make_pmem()
    return pmem, Pool(pmem, POOL_BYTES)


def test_pool_frames_taken_from_pmem(setup):
    pmem, pool = setup
    for i in range(POOL_BYTES // PAGESIZE):
        assert pmem.is_allocated(pool.physical_base + i * PAGESIZE)


def test_pool_base_is_virtual_mapping(setup):
    pmem, pool = setup
    assert pool.base == pmem.phys_to_virt(pool.physical_base)


def test_allocation_lies_inside_pool(setup):
    _, pool = setup
    ptr = pool.allocate(100)
    assert pool.base <= ptr < pool.base + POOL_BYTES
    assert ptr % 8 == 0


def test_allocations_do_not_overlap(setup):
    _, pool = setup
    a = pool.allocate(64)
    b = pool.allocate(64)
    assert abs(a - b) >= 64
    assert pool.tlsf.check() == 0


def test_free_then_allocate_reuses_address(setup):
    _, pool = setup
    ptr = pool.allocate(128)
    pool.free(ptr)
    assert pool.allocate(128) == ptr


def test_zero_allocation_returns_none(setup):
    _, pool = setup
    assert pool.allocate(0) is None


def test_oversized_allocation_raises(setup):
    _, pool = setup
    with pytest.raises(MemoryError):
        pool.allocate(POOL_BYTES)


def test_free_none_is_ignored(setup):
    _, pool = setup
    pool.free(None)
    assert pool.tlsf.check() == 0


def test_insufficient_physical_memory_raises():
    pmem = make_pmem(length=0x8000)
    with pytest.raises(MemoryError):
        Pool(pmem, POOL_BYTES)


def test_two_pools_use_distinct_frames():
    pmem = make_pmem()
    first = Pool(pmem, POOL_BYTES)
    second = Pool(pmem, POOL_BYTES)
    assert abs(first.physical_base - second.physical_base) >= POOL_BYTES