# -*- coding: utf-8 -*-
"""Free block lists of the file systems found in partitions.

Every reader returns a FreeBlocks tuple: the block size in bytes, and an
ordered list of (first, last) inclusive block indexes relative to the
partition start. Readers are selected by the file system type reported by
blkid; a type without reader yields None."""

import os, re, struct
from collections import namedtuple
from BMAPtools import utils
from BMAPtools.debug import log
from BMAPtools.errors import CollaboratorFailure
DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))
if DEBUG&2: import hexdump

FreeBlocks = namedtuple('FreeBlocks', 'block_size ranges')


def free_block_ranges(fstype, device):
    "Returns the FreeBlocks of the file system on a device, or None if its type is not supported"
    reader = READERS.get(fstype)
    if not reader:
        return None
    fb = reader(device)
    if DEBUG&2: log("free_block_ranges: %d free ranges of %d byte blocks in %s (%s)", len(fb.ranges), fb.block_size, device, fstype)
    return fb

def parse_block_list(s):
    "Parses a '1123, 1345-1456, 1567' list into [(1123, 1123), (1345, 1456), (1567, 1567)]"
    ranges = []
    for item in s.split(','):
        item = item.strip()
        if not item: continue
        a, _, b = item.partition('-')
        try:
            first = int(a)
            last = int(b) if b else first
        except ValueError:
            raise CollaboratorFailure("bad free block range '%s'" % item)
        if last < first:
            raise CollaboratorFailure("reversed free block range '%s'" % item)
        ranges.append((first, last))
    return ranges


#
# ext2/3/4: dumpe2fs output
#
# Block size:               4096
# ...
# Group 0: (Blocks 0-32767) csum 0x5d2b [ITABLE_ZEROED]
#   ...
#   Free blocks: 5765-32767
#   Free inodes: 12-8192
#
block_size_re = re.compile(r'^Block size:\s+(\d+)', re.M)
group_free_re = re.compile(r'^[ \t]+Free blocks:(.*)$', re.M)

def parse_dumpe2fs(s):
    m = block_size_re.search(s)
    if not m:
        raise CollaboratorFailure("no block size line in dumpe2fs output")
    ranges = []
    # the unindented "Free blocks:" line is the total count, not a list
    for m2 in group_free_re.finditer(s):
        ranges += parse_block_list(m2.group(1))
    return FreeBlocks(int(m.group(1)), ranges)

def ext_free_blocks(device):
    return parse_dumpe2fs(utils.run('dumpe2fs', device))


#
# FAT12/16/32: read the allocation table directly
#
class boot_fat(object):
    "FAT12/16/32 Boot Sector (BIOS Parameter Block)"
    layout = { # { offset: (name, unpack string) }
    0x0B: ('wBytesPerSector', '<H'),
    0x0D: ('uchSectorsPerCluster', 'B'),
    0x0E: ('wReservedSectors', '<H'), # reserved sectors before 1st FAT
    0x10: ('uchFATCopies', 'B'),
    0x11: ('wMaxRootEntries', '<H'), # zero in FAT32
    0x13: ('wTotalSectors', '<H'), # volume sectors if < 65536, or zero
    0x16: ('wSectorsPerFAT', '<H'), # zero in FAT32, see 24h instead
    0x20: ('dwTotalSectors', '<I'), # volume sectors if > 65535, or zero
    0x24: ('dwSectorsPerFAT', '<I'), # FAT32 only
    0x1FE: ('wBootSignature', '<H') # 55 AA
    } # Size = 0x200 (512 byte)

    def __init__ (self, s):
        self._i = 0
        self._buf = s
        self._kv = self.layout.copy()
        self._vk = {} # { name: offset}
        for k, v in list(self._kv.items()):
            self._vk[v[0]] = k
        if not self.is_valid():
            raise CollaboratorFailure("not a valid FAT boot sector")
        # all in sectors
        self.total = self.wTotalSectors or self.dwTotalSectors
        self.fatsize = self.wSectorsPerFAT or self.dwSectorsPerFAT
        self.rootsize = (self.wMaxRootEntries*32 + self.wBytesPerSector-1) // self.wBytesPerSector
        self.fatoffs = self.wReservedSectors
        # Data area offset (=cluster #2)
        self.dataoffs = self.fatoffs + self.uchFATCopies*self.fatsize + self.rootsize
        if self.total <= self.dataoffs:
            raise CollaboratorFailure("FAT data area lies past the volume end")
        self.clusters = (self.total - self.dataoffs) // self.uchSectorsPerCluster
        # FAT type depends on the clusters count only
        if self.clusters < 4085:
            self.bits = 12
        elif self.clusters < 65525:
            self.bits = 16
        else:
            self.bits = 32

    __getattr__ = utils.common_getattr

    def __str__ (self):
        return utils.class2str(self, "FAT%d Boot Sector\n" % self.bits)

    def is_valid(self):
        spc = self.uchSectorsPerCluster
        return self.wBootSignature == 0xAA55 and \
            self.wBytesPerSector in (512, 1024, 2048, 4096) and \
            spc and not spc & (spc-1) and \
            self.uchFATCopies and \
            (self.wSectorsPerFAT or self.dwSectorsPerFAT) and \
            (self.wTotalSectors or self.dwTotalSectors)

    def cl2sector(self, cluster):
        "Returns the first sector of a cluster"
        return self.dataoffs + (cluster-2)*self.uchSectorsPerCluster


FAT_PAGE = 1<<20 # slots read at once (FAT16/32)

def fat_slots(f, boot):
    "Yields the FAT slot value of every data cluster, from #2 onwards"
    bps = boot.wBytesPerSector
    if boot.bits == 12:
        f.seek(boot.fatoffs*bps)
        s = f.read(boot.fatsize*bps)
        if len(s) < (boot.clusters+2)*3//2 + 1:
            raise CollaboratorFailure("truncated FAT12 table")
        for i in range(2, boot.clusters+2):
            j = i*3//2
            slot = s[j] | s[j+1]<<8
            if i % 2: # odd cluster
                yield slot >> 4
            else:
                yield slot & 0x0FFF
        return
    if boot.bits == 16:
        size, fmt, mask = 2, 'H', 0xFFFF
    else:
        size, fmt, mask = 4, 'I', 0x0FFFFFFF # FAT32 uses 28 bits only
    f.seek(boot.fatoffs*bps + 2*size)
    todo = boot.clusters
    while todo:
        n = min(todo, FAT_PAGE)
        s = f.read(n*size)
        if len(s) < n*size:
            raise CollaboratorFailure("truncated FAT%d table" % boot.bits)
        for slot in struct.unpack('<%d%s' % (n, fmt), s):
            yield slot & mask
        todo -= n

def map_free_space(f):
    """Maps the free clusters of a FAT volume in a FreeBlocks list of sector
    ranges, merging consecutive free clusters in runs."""
    f.seek(0)
    s = f.read(512)
    if len(s) < 512:
        raise CollaboratorFailure("can't read a FAT boot sector")
    if DEBUG&2: log("map_free_space: boot sector\n%s", hexdump.hexdump(s, 'return'))
    boot = boot_fat(s)
    if DEBUG&2: log("map_free_space: %s", boot)
    spc = boot.uchSectorsPerCluster
    ranges = []
    first_free = -1
    cluster = 2
    for slot in fat_slots(f, boot):
        if not slot:
            if first_free < 0:
                first_free = cluster
        elif first_free > -1:
            ranges.append((boot.cl2sector(first_free), boot.cl2sector(cluster)-1))
            if DEBUG&2: log("map_free_space: free run of clusters %d-%d", first_free, cluster-1)
            first_free = -1
        cluster += 1
    if first_free > -1:
        ranges.append((boot.cl2sector(first_free), boot.cl2sector(cluster)-1))
        if DEBUG&2: log("map_free_space: free run of clusters %d-%d", first_free, cluster-1)
    if DEBUG&2: log("map_free_space: %d free runs in %d clusters of %d sectors", len(ranges), boot.clusters, spc)
    return FreeBlocks(boot.wBytesPerSector, ranges)

def fat_free_blocks(device):
    with open(device, 'rb') as f:
        return map_free_space(f)


READERS = {
    'ext2': ext_free_blocks,
    'ext3': ext_free_blocks,
    'ext4': ext_free_blocks,
    'vfat': fat_free_blocks,
}
