import pytest

from BMAPtools.errors import OverlappingRangesError, UnresolvableBlockSize
from BMAPtools.ranges import ByteRange, RangeSet, complement, gcd, resolve_block_size


def covered(ranges):
    s = set()
    for r in ranges:
        s.update(range(r.begin, r.end))
    return s


def test_gcd_handles_zero_operand():
    assert gcd(0, 4096) == 4096
    assert gcd(4096, 0) == 4096
    assert gcd(12, 18) == 6
    assert gcd(7, 13) == 1


def test_byte_range_rejects_reversed_bounds():
    with pytest.raises(ValueError):
        ByteRange(10, 5)
    assert ByteRange(5, 10).length == 5


def test_rangeset_drops_empty_ranges_and_keeps_adjacent_ones():
    free = RangeSet([(0, 0), (100, 150), (150, 200), (300, 300)])
    assert list(free) == [ByteRange(100, 150), ByteRange(150, 200)]
    assert free.total_length() == 100


def test_rangeset_sorts_stably_by_begin():
    free = RangeSet([(300, 350), (100, 150), (200, 250)])
    assert free.sorted_by_begin() == [ByteRange(100, 150), ByteRange(200, 250), ByteRange(300, 350)]
    # the set itself keeps its insertion order
    assert list(free)[0] == ByteRange(300, 350)


def test_block_size_is_gcd_of_all_boundaries():
    free = RangeSet([(100, 250), (250, 400)])
    assert resolve_block_size(free) == 50


def test_block_size_of_partition_aligned_ranges():
    free = RangeSet([(1048576 + 4096, 1048576 + 8192), (2097152, 4194304)])
    assert resolve_block_size(free) == 4096


def test_block_size_with_range_at_image_start():
    assert resolve_block_size(RangeSet([(0, 3072)])) == 3072


def test_block_size_needs_free_ranges():
    with pytest.raises(UnresolvableBlockSize):
        resolve_block_size(RangeSet())


def test_block_size_divides_every_boundary():
    free = RangeSet([(512 * 3, 512 * 10), (512 * 17, 512 * 20), (512 * 33, 512 * 40)])
    bs = resolve_block_size(free)
    assert all(x % bs == 0 for x in free.boundaries())
    assert bs == 512


def test_complement_scenario():
    free = RangeSet([(300, 350), (100, 150)])
    assert complement(free, 1000) == [ByteRange(0, 100), ByteRange(150, 300), ByteRange(350, 1000)]


def test_complement_without_free_ranges_maps_everything():
    assert complement(RangeSet(), 1000) == [ByteRange(0, 1000)]


def test_complement_keeps_empty_gaps():
    free = RangeSet([(0, 100), (100, 200), (900, 1000)])
    assert complement(free, 1000) == [ByteRange(0, 0), ByteRange(100, 100), ByteRange(200, 900), ByteRange(1000, 1000)]


@pytest.mark.parametrize("ranges,size", [
    ([(10, 20), (40, 41), (90, 100)], 100),
    ([(0, 50)], 64),
    ([(5, 6), (7, 8), (8, 12)], 30),
    ([], 17),
])
def test_complement_partitions_the_image(ranges, size):
    free = RangeSet(ranges)
    mapped = complement(free, size)
    assert not covered(mapped) & covered(free)
    assert covered(mapped) | covered(free) == set(range(size))


def test_complement_detects_overlaps():
    with pytest.raises(OverlappingRangesError):
        complement(RangeSet([(100, 200), (150, 250)]), 1000)
    with pytest.raises(OverlappingRangesError):
        complement(RangeSet([(900, 1100)]), 1000)


def test_check_disjoint():
    RangeSet([(0, 10), (10, 20)]).check_disjoint(20)
    with pytest.raises(OverlappingRangesError):
        RangeSet([(10, 20), (0, 11)]).check_disjoint()
    with pytest.raises(OverlappingRangesError):
        RangeSet([(10, 20)]).check_disjoint(15)
