# -*- coding: utf-8 -*-
import os, struct, subprocess
from BMAPtools.debug import log
from BMAPtools.errors import CollaboratorFailure
DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))

# External programs, overridable from the environment
TOOLS = {
    'fdisk': os.getenv('BMAPTOOLS_FDISK', 'fdisk'),
    'losetup': os.getenv('BMAPTOOLS_LOSETUP', 'losetup'),
    'blkid': os.getenv('BMAPTOOLS_BLKID', 'blkid'),
    'dumpe2fs': os.getenv('BMAPTOOLS_DUMPE2FS', 'dumpe2fs'),
    'fallocate': os.getenv('BMAPTOOLS_FALLOCATE', 'fallocate'),
}

def run(tool, *args, **kwargs):
    """Runs an external tool and returns its standard output as text.
    The tool name is looked up in TOOLS; the C locale is forced so that the
    output grammar does not depend on the user's language. A non-zero exit
    code raises CollaboratorFailure, unless listed in 'ok_codes'."""
    ok_codes = kwargs.get('ok_codes', (0,))
    cmdv = [TOOLS.get(tool, tool)] + [str(a) for a in args]
    env = dict(os.environ, LC_ALL='C', LANG='C')
    if DEBUG: log("run: %s", ' '.join(cmdv))
    try:
        p = subprocess.run(cmdv, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=env, universal_newlines=True)
    except OSError as e:
        raise CollaboratorFailure("can't run %s: %s" % (cmdv[0], e.strerror))
    if p.returncode not in ok_codes:
        raise CollaboratorFailure("%s failed with code %d: %s" % (cmdv[0], p.returncode, p.stderr.strip()))
    return p.stdout

def common_getattr(c, name):
    "Decodes and stores an attribute following special class layout"
    i = c._vk.get(name)
    if i is None:
        raise AttributeError(name)
    fmt = c._kv[i][1]
    cnt = struct.unpack_from(fmt, c._buf, i+c._i) [0]
    setattr(c, name,  cnt)
    return cnt

def class2str(c, s):
    "Pretty-prints class contents"
    keys = list(c._kv.keys())
    keys.sort()
    for key in keys:
        o = c._kv[key][0]
        v = getattr(c, o)
        if isinstance(v, int):
            v = hex(v)
        s += '%x: %s = %s\n' % (key, o, v)
    return s

def human_size(size):
    "Returns a size in bytes as a short string with binary units"
    if size < 1024:
        return '%d bytes' % size
    for unit in ('KiB', 'MiB', 'GiB', 'TiB', 'PiB'):
        size /= 1024.0
        if size < 1024 or unit == 'PiB':
            break
    return '%.1f %s' % (size, unit)

def human_percent(part, whole):
    "Returns a percentage string, or '0.0%' for an empty whole"
    if not whole: return '0.0%'
    return '%.1f%%' % (100.0 * part / whole)
