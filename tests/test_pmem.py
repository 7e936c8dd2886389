import pytest

from hive.pmem import (
    PAGESIZE,
    MemEntry,
    MemType,
    PhysicalMemory,
    format_size,
)

KERNEL_BASE = 0xFFFF800000000000


def make(entries):
    return PhysicalMemory(entries, KERNEL_BASE)


def simple():
    return make([
        MemEntry(0, 0x1000, MemType.RESERVED),
        MemEntry(0x100000, 0x100000, MemType.USABLE),
    ])


def test_format_size_units():
    assert format_size(2 * 1024 ** 3) == "2 GiB"
    assert format_size(3 * 1024 ** 2) == "3 MiB"
    assert format_size(512) == "512 bytes"


def test_probe_statistics():
    pm = simple()
    assert pm.usable == 0x100000
    assert pm.usable_top == 0x200000
    assert pm.bitmap_size == 32


def test_bitmap_placed_in_first_fitting_usable_entry():
    pm = simple()
    assert pm.bitmap_address == pm.phys_to_virt(0x100000)


def test_phys_to_virt_adds_kernel_base():
    pm = simple()
    assert pm.phys_to_virt(0x2000) == KERNEL_BASE + 0x2000


def test_entry_type_coerced_to_enum():
    entry = MemEntry(0x1000, 0x1000, 0)
    assert entry.type is MemType.USABLE


def test_reserved_memory_starts_allocated():
    pm = simple()
    assert pm.is_allocated(0)
    assert not pm.is_allocated(0x100000)


def test_alloc_marks_frames_and_is_page_aligned():
    pm = simple()
    base = pm.alloc(4)
    assert base % PAGESIZE == 0
    assert 0x100000 <= base < 0x200000
    for i in range(4):
        assert pm.is_allocated(base + i * PAGESIZE)


def test_allocations_do_not_overlap():
    pm = simple()
    a = pm.alloc(3)
    b = pm.alloc(2)
    assert a + 3 * PAGESIZE <= b or b + 2 * PAGESIZE <= a


def test_free_then_alloc_reuses_frames():
    pm = simple()
    base = pm.alloc(2)
    pm.free(base, 2)
    assert not pm.is_allocated(base)
    assert pm.alloc(2) == base


def test_alloc_skips_reserved_gap():
    pm = make([
        MemEntry(0x1000, 0x2000, MemType.USABLE),
        MemEntry(0x3000, 0x1000, MemType.RESERVED),
        MemEntry(0x4000, 0x4000, MemType.USABLE),
    ])
    first = pm.alloc(2)
    assert first == 0x1000
    second = pm.alloc(3)
    assert second == 0x4000


def test_run_needs_contiguous_frames():
    pm = make([
        MemEntry(0x1000, 0x1000, MemType.USABLE),
        MemEntry(0x2000, 0x1000, MemType.RESERVED),
        MemEntry(0x3000, 0x2000, MemType.USABLE),
    ])
    base = pm.alloc(2)
    assert base == 0x3000
    assert not pm.is_allocated(0x1000)


def test_exhaustion_raises_memory_error():
    pm = make([MemEntry(0x1000, 0x4000, MemType.USABLE)])
    pm.alloc(4)
    with pytest.raises(MemoryError):
        pm.alloc(1)


def test_too_large_request_raises_memory_error():
    pm = simple()
    with pytest.raises(MemoryError):
        pm.alloc(0x100000 // PAGESIZE + 1)


def test_non_positive_count_rejected():
    pm = simple()
    with pytest.raises(ValueError):
        pm.alloc(0)


def test_partial_leading_page_is_not_usable():
    pm = make([MemEntry(0x1800, 0x2800, MemType.USABLE)])
    assert pm.is_allocated(0x1000)
    assert not pm.is_allocated(0x2000)
    assert not pm.is_allocated(0x3000)


def test_no_usable_memory_raises():
    with pytest.raises(MemoryError):
        make([MemEntry(0, 0x10000, MemType.RESERVED)])


def test_address_beyond_map_reported_allocated():
    pm = simple()
    assert pm.is_allocated(0x10000000)


def test_free_outside_managed_memory_rejected():
    pm = simple()
    with pytest.raises(ValueError):
        pm.free(0x10000000, 1)