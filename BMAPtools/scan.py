# -*- coding: utf-8 -*-

#
# High-level functions: scan an image for free space, then write its block
# map and/or punch holes in it.
#

import os
from BMAPtools import partutils, bmap, sparse
from BMAPtools.debug import log, warn
from BMAPtools.errors import EmptyImage, NoFreeSpaceFound, OverlappingRangesError
from BMAPtools.freeblocks import free_block_ranges
from BMAPtools.loopdev import LoopDevice, probe_filesystem
from BMAPtools.ranges import ByteRange, RangeSet
DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))


def to_byte_ranges(part, fb):
    """Converts the inclusive free block ranges of a partition into absolute
    byte ranges, checking they fall inside the partition."""
    ranges = []
    for first, last in fb.ranges:
        r = ByteRange(part.offset + first*fb.block_size, part.offset + (last+1)*fb.block_size)
        if r.end > part.offset + part.size:
            raise OverlappingRangesError("free blocks %d-%d lie past the end of partition #%d" % (first, last, part.index))
        ranges.append(r)
    return ranges

def partition_free_space(image, part):
    "Returns the absolute free byte ranges of a partition, or [] if its file system is unknown"
    with LoopDevice(image, part.offset, part.size) as dev:
        fstype = probe_filesystem(dev.name)
        fb = free_block_ranges(fstype, dev.name)
    if fb is None:
        warn("partition #%d: unsupported file system '%s', treating it as fully used", part.index, fstype or 'unknown')
        return []
    return to_byte_ranges(part, fb)

def free_space(image, method='fdisk'):
    """Scans every partition of an image in table order and returns the pooled
    free ranges (a RangeSet), checked to be disjoint and inside the image."""
    image_size = sparse.file_size(image)
    free = RangeSet()
    for part in partutils.list_partitions(image, method):
        ranges = partition_free_space(image, part)
        if DEBUG&4: log("free_space: partition #%d gave %d free ranges", part.index, len(ranges))
        free.extend(ranges)
    free.check_disjoint(image_size)
    if DEBUG&4: log("free_space: %d free bytes in %d ranges", free.total_length(), len(free))
    return free

def make_bmap(image, free):
    "Builds the BmapDocument of an image from its free ranges"
    if not len(free):
        raise NoFreeSpaceFound("no free space found in '%s': unsupported or full file systems" % image)
    return bmap.build(sparse.file_size(image), free)

def process(image, bmap_path=None, sparsify=False, method='fdisk'):
    """Writes the block map of an image to 'bmap_path' (if given), then punches
    its free ranges (if 'sparsify'). Returns the BmapDocument or None."""
    if sparsify:
        sparse.check_not_sparse(image)
    if not sparse.file_size(image):
        raise EmptyImage("'%s' is empty" % image)
    free = free_space(image, method)
    doc = None
    if bmap_path:
        doc = make_bmap(image, free)
        doc.write(bmap_path)
    if sparsify:
        sparse.sparsify(image, free)
    return doc
