# -*- coding: utf-8 -*-
"""Partition tables of a disk image.

Partitions are listed in table order as absolute byte (offset, size) pairs.
Two readers are available: the output of 'fdisk -l' (the default, which
understands any label fdisk knows), and a native reader for DOS MBR (with
logical partitions in the extended chain) and GPT labels.

DOS extended partitions are containers: they are never reported themselves,
only the logical partitions inside them."""

import os, re, uuid
from collections import namedtuple
from BMAPtools import utils
from BMAPtools.debug import log
from BMAPtools.errors import CollaboratorFailure, NoPartitionsFound
DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))
if DEBUG&1: import hexdump

EXTENDED_TYPES = (0x05, 0x0F, 0x85)
GPT_PROTECTIVE = 0xEE

Partition = namedtuple('Partition', 'index offset size')


def list_partitions(image, method='fdisk', sector=512):
    "Returns the partitions of an image with the chosen reader"
    if method == 'fdisk':
        parts = parse_fdisk(utils.run('fdisk', '-l', image), image)
    elif method == 'native':
        with open(image, 'rb') as f:
            parts = read_partitions(f, sector)
    else:
        raise ValueError("unknown partition table reader '%s'" % method)
    if not parts:
        raise NoPartitionsFound("no partitions found in '%s'" % image)
    if DEBUG&1:
        for p in parts: log("list_partitions: #%d @%Xh size %Xh", p.index, p.offset, p.size)
    return parts


#
# fdisk -l
#
# Disk disk.img: 64 MiB, 67108864 bytes, 131072 sectors
# Units: sectors of 1 * 512 = 512 bytes
# ...
# Device     Boot Start    End Sectors Size Id Type
# disk.img1  *     2048  67583   65536  32M  c W95 FAT32 (LBA)
# disk.img2       67584 131071   63488  31M 83 Linux
#
units_re = re.compile(r'^Units:.*=\s*(\d+)\s+bytes', re.M)

def parse_fdisk(s, image=None):
    "Parses 'fdisk -l' output into a list of Partition"
    m = units_re.search(s)
    if not m:
        raise CollaboratorFailure("no unit size line in fdisk output")
    unit = int(m.group(1))
    if DEBUG&1: log("parse_fdisk: unit is %d bytes", unit)
    parts = []
    header = None
    for line in s.splitlines():
        if header is None:
            if line.startswith('Device'):
                header = line.split()
            continue
        if not line.strip():
            break # end of partitions table
        if image and line.startswith(image):
            fields = line[len(image):].split()[1:] # drop the partition number
        else:
            fields = line.split()[1:]
        if 'Boot' in header and fields and fields[0] == '*':
            fields = fields[1:]
        try:
            start, sectors = int(fields[0]), int(fields[2])
            ptype = int(fields[4], 16) if "Id" in header else None
        except (IndexError, ValueError):
            raise CollaboratorFailure("bad fdisk partition line: %s" % line)
        if ptype in EXTENDED_TYPES:
            if DEBUG&1: log("parse_fdisk: skipped extended partition @%d", start)
            continue
        parts.append(Partition(len(parts), start*unit, sectors*unit))
    return parts


#
# Native MBR/EBR and GPT reader
#
class MBR_Partition(object):
    "Partition entry in MBR/EBR Boot record (16 bytes)"
    layout = { # { offset: (name, unpack string) }
    0x00: ('bStatus', 'B'), # 80h=bootable, 00h=not bootable, other=invalid
    0x04: ('bType', 'B'), # partition type
    0x08: ('dwFirstSectorLBA', '<I'), # relative to the record (EBR 1st entry) or the extended partition (EBR 2nd entry)
    0x0C: ('dwTotalSectors', '<I'),
    } # Size = 0x10 (16 byte)

    def __init__ (self, s, index=0):
        self.index = index
        self._i = 0x1BE + 16*index
        self._buf = s
        self._kv = self.layout.copy()
        self._vk = {} # { name: offset}
        for k, v in list(self._kv.items()):
            self._vk[v[0]] = k

    __getattr__ = utils.common_getattr

    def __str__ (self):
        return utils.class2str(self, "DOS Partition Entry #%d\n" % self.index)

    def is_empty(self):
        return not self.bType or not self.dwTotalSectors


class MBR(object):
    "Master (or DOS Extended) Boot Record Sector"
    layout = { # { offset: (name, unpack string) }
    0x1FE: ('wBootSignature', '<H') # 55 AA
    } # Size = 0x200 (512 byte)

    def __init__ (self, s, offset=0):
        self._i = 0
        self._pos = offset # absolute offset of this record
        self._buf = s
        self._kv = self.layout.copy()
        self._vk = {} # { name: offset}
        for k, v in list(self._kv.items()):
            self._vk[v[0]] = k
        self.partitions = [MBR_Partition(s, i) for i in range(4)]

    __getattr__ = utils.common_getattr

    def __str__ (self):
        s = utils.class2str(self, "Master/Extended Boot Record @%X\n" % self._pos)
        for p in self.partitions:
            s += '\n' + str(p)
        return s


class GPT(object):
    "GPT Header Sector according to UEFI Specs"
    layout = { # { offset: (name, unpack string) }
    0x0: ('sEFISignature', '8s'), # EFI PART
    0x18: ('u64MyLBA', '<Q'),
    0x48: ('u64PartitionEntryLBA', '<Q'), # LBA of GUID Part Entry array
    0x50: ('dwNumberOfPartitionEntries', '<I'),
    0x54: ('dwSizeOfPartitionEntry', '<I'), # 128*(2**i)
    } # Size = 0x200 (512 byte)

    def __init__ (self, s, offset=0):
        self._i = 0
        self._pos = offset
        self._buf = s
        self._kv = self.layout.copy()
        self._vk = {} # { name: offset}
        for k, v in list(self._kv.items()):
            self._vk[v[0]] = k
        self.partitions = []

    __getattr__ = utils.common_getattr

    def __str__ (self):
        return utils.class2str(self, "GPT Header @%X\n" % self._pos)

    def parse(self, s):
        "Parses the GUID Partition Entry Array"
        for i in range(self.dwNumberOfPartitionEntries):
            j = i*self.dwSizeOfPartitionEntry
            self.partitions += [GPT_Partition(s[j:j+self.dwSizeOfPartitionEntry], index=i)]


class GPT_Partition(object):
    "Partition entry in GPT Array (128 bytes)"
    layout = { # { offset: (name, unpack string) }
    0x00: ('sPartitionTypeGUID', '16s'),
    0x20: ('u64StartingLBA', '<Q'),
    0x28: ('u64EndingLBA', '<Q'), # inclusive
    } # Size = 0x80 (128 byte)

    def __init__ (self, s, index=0):
        self.index = index
        self._i = 0
        self._buf = s
        self._kv = self.layout.copy()
        self._vk = {} # { name: offset}
        for k, v in list(self._kv.items()):
            self._vk[v[0]] = k

    __getattr__ = utils.common_getattr

    def __str__ (self):
        return utils.class2str(self, "GPT Partition Entry #%d\n" % self.index)

    def gettype(self):
        return uuid.UUID(bytes_le=self.sPartitionTypeGUID)

    def is_empty(self):
        return self.gettype().int == 0


def read_record(f, offset, sector):
    f.seek(offset)
    s = f.read(sector)
    if len(s) < 512:
        raise CollaboratorFailure("boot record @%Xh is past the image end" % offset)
    if DEBUG&1: log("read_record: sector @%Xh\n%s", offset, hexdump.hexdump(s[:512], 'return'))
    return MBR(s, offset)

def read_partitions(f, sector=512):
    "Reads the MBR (or GPT) partitions of an open image file"
    mbr = read_record(f, 0, sector)
    if mbr.wBootSignature != 0xAA55:
        raise CollaboratorFailure("invalid Master Boot Record signature %04Xh" % mbr.wBootSignature)
    if DEBUG&1: log("read_partitions: %s", mbr)
    if mbr.partitions[0].bType == GPT_PROTECTIVE:
        return read_gpt(f, sector)
    parts = []
    for p in mbr.partitions:
        if p.is_empty(): continue
        if p.bType in EXTENDED_TYPES:
            parts += read_logicals(f, p.dwFirstSectorLBA*sector, sector, len(parts))
            continue
        parts.append(Partition(len(parts), p.dwFirstSectorLBA*sector, p.dwTotalSectors*sector))
    return parts

def read_logicals(f, extoffs, sector, index=0):
    "Walks the EBR chain of an extended partition"
    parts = []
    ebroffs = extoffs
    seen = set()
    while True:
        if ebroffs in seen:
            raise CollaboratorFailure("loop in the extended partitions chain @%Xh" % ebroffs)
        seen.add(ebroffs)
        ebr = read_record(f, ebroffs, sector)
        if ebr.wBootSignature != 0xAA55:
            raise CollaboratorFailure("invalid Extended Boot Record @%Xh" % ebroffs)
        p = ebr.partitions[0]
        if not p.is_empty():
            parts.append(Partition(index+len(parts), ebroffs + p.dwFirstSectorLBA*sector, p.dwTotalSectors*sector))
        nxt = ebr.partitions[1]
        if nxt.is_empty():
            break
        ebroffs = extoffs + nxt.dwFirstSectorLBA*sector
    return parts

def read_gpt(f, sector=512):
    f.seek(sector)
    gpt = GPT(f.read(sector), sector)
    if gpt.sEFISignature != b'EFI PART':
        raise CollaboratorFailure("invalid GPT Header signature")
    if DEBUG&1: log("read_gpt: %s", gpt)
    f.seek(gpt.u64PartitionEntryLBA*sector)
    n = gpt.dwNumberOfPartitionEntries * gpt.dwSizeOfPartitionEntry
    s = f.read(n)
    if len(s) < n:
        raise CollaboratorFailure("truncated GPT Partition Entry Array")
    gpt.parse(s)
    parts = []
    for p in gpt.partitions:
        if p.is_empty(): continue
        parts.append(Partition(len(parts), p.u64StartingLBA*sector, (p.u64EndingLBA-p.u64StartingLBA+1)*sector))
    return parts
