# -*- coding: utf-8 -*-
"""Byte range arithmetic for block maps.

All ranges here are half open [begin, end) absolute byte offsets inside the
image file. Inclusive block indexes only appear when a bmap is rendered.

Free ranges are pooled from every partition without merging: two adjacent
free ranges stay distinct, so every boundary reported by a filesystem takes
part in the block size resolution."""

import os
from collections import namedtuple
from BMAPtools.debug import log
from BMAPtools.errors import UnresolvableBlockSize, OverlappingRangesError
DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))


class ByteRange(namedtuple('ByteRange', 'begin end')):
    "Half open byte interval [begin, end)"
    __slots__ = ()

    def __new__(cls, begin, end):
        if begin < 0 or end < begin:
            raise ValueError("invalid byte range [%d, %d)" % (begin, end))
        return super(ByteRange, cls).__new__(cls, begin, end)

    @property
    def length(self):
        return self.end - self.begin

    def __str__ (self):
        return '[%d, %d)' % (self.begin, self.end)


class RangeSet(object):
    "Unordered collection of disjoint byte ranges"
    def __init__ (self, ranges=()):
        self._ranges = []
        for r in ranges:
            self.append(r)

    def __len__ (self):
        return len(self._ranges)

    def __iter__ (self):
        return iter(self._ranges)

    def __eq__ (self, other):
        if isinstance(other, RangeSet):
            return self._ranges == other._ranges
        return NotImplemented

    def __repr__ (self):
        return 'RangeSet(%r)' % self._ranges

    def append(self, r):
        "Adds a range as is; empty ranges carry no information and are dropped"
        if not isinstance(r, ByteRange):
            r = ByteRange(*r)
        if not r.length:
            if DEBUG&4: log("RangeSet: dropped empty range @%d", r.begin)
            return
        self._ranges.append(r)

    def extend(self, ranges):
        for r in ranges:
            self.append(r)

    def sorted_by_begin(self):
        "Returns a new list of the ranges in ascending begin order (stable)"
        return sorted(self._ranges, key=lambda r: r.begin)

    def total_length(self):
        return sum(r.length for r in self._ranges)

    def boundaries(self):
        "Yields the begin and end offset of every range"
        for r in self._ranges:
            yield r.begin
            yield r.end

    def check_disjoint(self, limit=None):
        """Raises OverlappingRangesError if two ranges share some bytes, or if
        a range ends past 'limit' (when given)."""
        last = None
        for r in self.sorted_by_begin():
            if last is not None and r.begin < last.end:
                raise OverlappingRangesError("free ranges %s and %s overlap" % (last, r))
            if limit is not None and r.end > limit:
                raise OverlappingRangesError("free range %s lies past the image end (%d)" % (r, limit))
            last = r


def gcd(a, b):
    "Greatest common divisor with Euclid's algorithm; gcd(0, x) is x"
    while a:
        a, b = b % a, a
    return b

def resolve_block_size(free):
    """Returns the largest block size dividing every begin and end offset of
    the free ranges. Raises UnresolvableBlockSize with no free ranges."""
    bs = 0
    n = 0
    for x in free.boundaries():
        bs = gcd(bs, x)
        n += 1
    if not n:
        raise UnresolvableBlockSize("no free ranges to derive a block size from")
    # only reachable with boundaries all set at zero, that RangeSet can't hold
    if not bs:
        raise UnresolvableBlockSize("all range boundaries are zero")
    if DEBUG&4: log("resolve_block_size: %d bytes from %d boundaries", bs, n)
    return bs

def complement(free, image_size):
    """Returns the list of mapped ranges, that is the gaps between the free
    ranges inside [0, image_size). Empty gaps are returned too: the caller
    decides if they must be reported."""
    mapped = []
    cursor = 0
    for r in free.sorted_by_begin():
        if r.begin < cursor:
            raise OverlappingRangesError("free range %s starts before offset %d" % (r, cursor))
        mapped.append(ByteRange(cursor, r.begin))
        cursor = r.end
    if cursor > image_size:
        raise OverlappingRangesError("free ranges end at %d, past the image end (%d)" % (cursor, image_size))
    mapped.append(ByteRange(cursor, image_size))
    if DEBUG&4: log("complement: %d free ranges gave %d mapped ones", len(free), len(mapped))
    return mapped
