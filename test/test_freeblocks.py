import struct

import pytest

from BMAPtools import freeblocks, utils
from BMAPtools.errors import CollaboratorFailure
from BMAPtools.freeblocks import FreeBlocks

DUMPE2FS = """\
Filesystem volume name:   <none>
Last mounted on:          <not available>
Filesystem magic number:  0xEF53

Free blocks:              27103
Free inodes:              16373
First block:              0
Block size:               4096
Fragment size:            4096

Group 0: (Blocks 0-32767) csum 0x5d2b [ITABLE_ZEROED]
  Primary superblock at 0, Group descriptors at 1-1
  Block bitmap at 2 (+2)
  Inode bitmap at 18 (+18)
  Inode table at 34-545 (+34)
  27001 free blocks, 8181 free inodes, 2 directories, 8181 unused inodes
  Free blocks: 5767-32767
  Free inodes: 12-8192
Group 1: (Blocks 32768-65535) csum 0x1e2f [INODE_UNINIT, ITABLE_ZEROED]
  Backup superblock at 32768, Group descriptors at 32769-32769
  0 free blocks, 8192 free inodes, 0 directories, 8192 unused inodes
  Free blocks:
  Free inodes: 16385-24576
Group 2: (Blocks 65536-98303) csum 0x7a1c [INODE_UNINIT, BLOCK_UNINIT]
  102 free blocks, 8192 free inodes, 0 directories, 8192 unused inodes
  Free blocks: 65540, 65600-65700
  Free inodes: 24577-32768
"""


def test_parse_block_list():
    assert freeblocks.parse_block_list(' 1123, 1345-1456, 1567') == [(1123, 1123), (1345, 1456), (1567, 1567)]
    assert freeblocks.parse_block_list('   ') == []
    with pytest.raises(CollaboratorFailure):
        freeblocks.parse_block_list('12-x')
    with pytest.raises(CollaboratorFailure):
        freeblocks.parse_block_list('20-10')


def test_parse_dumpe2fs():
    fb = freeblocks.parse_dumpe2fs(DUMPE2FS)
    assert fb == FreeBlocks(4096, [(5767, 32767), (65540, 65540), (65600, 65700)])


def test_parse_dumpe2fs_needs_block_size():
    with pytest.raises(CollaboratorFailure):
        freeblocks.parse_dumpe2fs(DUMPE2FS.replace('Block size:', 'Blocksize'))


def test_ext_reader_runs_dumpe2fs(monkeypatch):
    calls = []

    def fake_run(tool, *args, **kwargs):
        calls.append((tool,) + args)
        return DUMPE2FS
    monkeypatch.setattr(utils, 'run', fake_run)
    fb = freeblocks.free_block_ranges('ext4', '/dev/loop7')
    assert calls == [('dumpe2fs', '/dev/loop7')]
    assert fb.block_size == 4096


def test_unsupported_type_has_no_reader():
    assert freeblocks.free_block_ranges('xfs', '/dev/loop7') is None
    assert freeblocks.free_block_ranges('', '/dev/loop7') is None


def boot_sector(spc, reserved, fats, root_entries, total, spf, total32=0, spf32=0):
    s = bytearray(512)
    s[0:3] = b'\xEB\x3C\x90'
    struct.pack_into('<HBHBHH', s, 0x0B, 512, spc, reserved, fats, root_entries, total)
    struct.pack_into('<H', s, 0x16, spf)
    struct.pack_into('<II', s, 0x20, total32, spf32)
    s[0x1FE:0x200] = b'\x55\xAA'
    return bytes(s)


def pack_fat12(slots):
    s = bytearray((len(slots) * 3 + 1) // 2)
    for i, v in enumerate(slots):
        j = i * 3 // 2
        if i % 2:
            s[j] = (s[j] & 0x0F) | ((v & 0x0F) << 4)
            s[j + 1] = (v >> 4) & 0xFF
        else:
            s[j] = v & 0xFF
            s[j + 1] = (s[j + 1] & 0xF0) | ((v >> 8) & 0x0F)
    return bytes(s)


def write_volume(path, sectors, records):
    with open(path, 'wb') as f:
        f.truncate(sectors * 512)
        for lba, s in records.items():
            f.seek(lba * 512)
            f.write(s)
    return str(path)


def test_fat12_free_clusters(tmp_path):
    # 64 sectors: boot, 2 FATs of 1 sector, 1 root sector, 60 data clusters
    slots = [0xFF8, 0xFFF] + [0] * 60
    slots[2:6] = [3, 4, 5, 0xFFF]
    slots[10] = 0xFFF
    fat = pack_fat12(slots)
    img = write_volume(tmp_path / 'fat12.img', 64, {0: boot_sector(1, 1, 2, 16, 64, 1), 1: fat, 2: fat})
    fb = freeblocks.free_block_ranges('vfat', img)
    # clusters 6-9 and 11-61, cluster #2 being sector 4
    assert fb == FreeBlocks(512, [(8, 11), (13, 63)])


def test_fat16_free_clusters(tmp_path):
    # 1 reserved + 2x17 FAT + 32 root sectors, then 4200 clusters
    total = 67 + 4200
    slots = [0xFFF8, 0xFFFF] + [0xFFFF] * 4200
    for i in range(100, 200):
        slots[i] = 0
    slots[4201] = 0
    fat = struct.pack('<%dH' % len(slots), *slots)
    img = write_volume(tmp_path / 'fat16.img', total, {0: boot_sector(1, 1, 2, 512, total, 17), 1: fat, 18: fat})
    with open(img, 'rb') as f:
        fb = freeblocks.map_free_space(f)
    assert fb == FreeBlocks(512, [(67 + 98, 67 + 198 - 1), (67 + 4199, 67 + 4199)])


def test_fat32_free_clusters_ignore_reserved_bits(tmp_path):
    # 32 reserved + 2x513 FAT sectors, then 65600 clusters
    total = 1058 + 65600
    slots = [0x0FFFFFF8, 0x0FFFFFFF, 0x0FFFFFFF, 0xF0000000]
    fat = struct.pack('<%dI' % len(slots), *slots)
    img = write_volume(tmp_path / 'fat32.img', total, {0: boot_sector(1, 32, 2, 0, 0, 0, total, 513), 32: fat})
    with open(img, 'rb') as f:
        fb = freeblocks.map_free_space(f)
    assert fb == FreeBlocks(512, [(1059, total - 1)])


def test_invalid_fat_boot_sector(tmp_path):
    img = write_volume(tmp_path / 'raw.img', 64, {})
    with pytest.raises(CollaboratorFailure):
        freeblocks.free_block_ranges('vfat', img)
