# -*- coding: utf-8 -*-
"""Block map (bmap 2.0) documents.

A bmap lists the blocks of an image file which hold useful data, so that
flashing tools can skip the rest. The document carries a SHA-256 checksum of
itself: it is computed over the whole rendered text with the checksum field
set to all ASCII "0", then written in place of those zeroes."""

import os, hashlib
from BMAPtools.debug import log
from BMAPtools.errors import EmptyImage, InternalInvariantError
from BMAPtools.ranges import resolve_block_size, complement
from BMAPtools.utils import human_size, human_percent
DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))

BMAP_VERSION = '2.0'
CHECKSUM_TYPE = 'sha256'
CHECKSUM_LEN = hashlib.sha256().digest_size * 2 # hex digits
PLACEHOLDER = '0' * CHECKSUM_LEN

HEADER = """<?xml version="1.0" ?>
<!-- This file contains the block map for an image file, which is basically
     a list of useful (mapped) block numbers in the image file. In other
     words, it lists only those blocks which contain data (boot sector,
     partition table, file-system metadata, files, directories, extents,
     etc). These blocks have to be copied to the target device. The other
     blocks do not contain any useful data and do not have to be copied to
     the target device.

     The block map is an optimization which allows to copy or flash the
     image to the target device quicker than copying the entire image. This
     is because with bmap less data is copied: <MappedBlocksCount> blocks
     instead of <BlocksCount> blocks.

     Besides the machine-readable data, this file contains useful commentaries
     which contain human-readable information like image size, percentage of
     mapped data, etc.

     The 'version' attribute is the block map file format version in the
     'major.minor' format. The version major number is increased whenever an
     incompatible block map format change is made. The minor number changes
     in case of minor backward-compatible changes. -->

<bmap version="%(version)s">
    <!-- Image size in bytes: %(image_size_human)s -->
    <ImageSize> %(image_size)d </ImageSize>

    <!-- Size of a block in bytes -->
    <BlockSize> %(block_size)d </BlockSize>

    <!-- Count of blocks in the image file -->
    <BlocksCount> %(blocks_count)d </BlocksCount>

    <!-- Count of mapped blocks: %(mapped_size_human)s or %(mapped_percent)s -->
    <MappedBlocksCount> %(mapped_blocks_count)d </MappedBlocksCount>

    <!-- Type of checksum used in this file -->
    <ChecksumType> %(checksum_type)s </ChecksumType>

    <!-- The checksum of this bmap file. When it is calculated, the value of
         the checksum has to be zero (all ASCII "0" symbols). -->
    <BmapFileChecksum> %(checksum)s </BmapFileChecksum>

    <!-- The block map which consists of elements which may either be a
         range of blocks or a single block. -->
    <BlockMap>
"""

FOOTER = """    </BlockMap>
</bmap>
"""

CHECKSUM_FIELD = '<BmapFileChecksum> %s </BmapFileChecksum>'


class BmapDocument(object):
    "In memory block map of an image"
    def __init__ (self, image_size, block_size, blocks_count, mapped_blocks_count, ranges):
        self.image_size = image_size
        self.block_size = block_size
        self.blocks_count = blocks_count
        self.mapped_blocks_count = mapped_blocks_count
        self.checksum_type = CHECKSUM_TYPE
        self.checksum = None # set by render()
        self.ranges = ranges # [(first, last)] inclusive block indexes

    def __str__ (self):
        return "bmap of %d blocks x %d bytes, %d mapped in %d ranges" % (self.blocks_count, self.block_size, self.mapped_blocks_count, len(self.ranges))

    def _render(self, checksum):
        s = HEADER % {
            'version': BMAP_VERSION,
            'image_size': self.image_size,
            'image_size_human': human_size(self.image_size),
            'block_size': self.block_size,
            'blocks_count': self.blocks_count,
            'mapped_blocks_count': self.mapped_blocks_count,
            'mapped_size_human': human_size(self.mapped_blocks_count*self.block_size),
            'mapped_percent': human_percent(self.mapped_blocks_count, self.blocks_count),
            'checksum_type': self.checksum_type,
            'checksum': checksum }
        lines = []
        for first, last in self.ranges:
            if first == last:
                lines.append('        <Range> %d </Range>\n' % first)
            else:
                lines.append('        <Range> %d-%d </Range>\n' % (first, last))
        return s + ''.join(lines) + FOOTER

    def render(self):
        "Returns the final XML text, with its own checksum embedded"
        s = self._render(PLACEHOLDER)
        self.checksum = hashlib.sha256(s.encode('utf-8')).hexdigest()
        if DEBUG&4: log("render: bmap checksum is %s", self.checksum)
        # literal replacement, in the checksum field only
        return s.replace(CHECKSUM_FIELD % PLACEHOLDER, CHECKSUM_FIELD % self.checksum, 1)

    def write(self, path):
        "Renders and writes the document to a file"
        s = self.render()
        with open(path, 'w', encoding='utf-8', newline='\n') as f:
            f.write(s)
        if DEBUG&4: log("write: %d bytes written to %s", len(s), path)
        return s


def build(image_size, free):
    """Builds the BmapDocument of an image given the pooled free ranges (a
    RangeSet, in any order). Raises EmptyImage for an empty image and
    UnresolvableBlockSize without free ranges."""
    if not image_size:
        raise EmptyImage("the image is empty")
    block_size = resolve_block_size(free)
    if image_size % block_size:
        raise InternalInvariantError("image size %d is not a multiple of the block size %d" % (image_size, block_size))
    blocks_count = image_size // block_size
    mapped_blocks_count = blocks_count - free.total_length() // block_size
    ranges = []
    for r in complement(free, image_size):
        if not r.length: continue
        ranges.append((r.begin // block_size, r.end // block_size - 1))
    doc = BmapDocument(image_size, block_size, blocks_count, mapped_blocks_count, ranges)
    if DEBUG&4: log("build: %s", doc)
    return doc

def verify_checksum(s):
    "Returns True if the checksum embedded in a rendered bmap matches its contents"
    i = s.find('<BmapFileChecksum>')
    j = s.find('</BmapFileChecksum>', i)
    if i < 0 or j < 0:
        return False
    checksum = s[i+len('<BmapFileChecksum>'):j].strip()
    if len(checksum) != CHECKSUM_LEN:
        return False
    s = s.replace(CHECKSUM_FIELD % checksum, CHECKSUM_FIELD % PLACEHOLDER, 1)
    return hashlib.sha256(s.encode('utf-8')).hexdigest() == checksum
