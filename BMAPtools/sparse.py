# -*- coding: utf-8 -*-
"Turns the free ranges of an image file into holes"

import os
from BMAPtools import utils
from BMAPtools.debug import log
from BMAPtools.errors import AlreadySparseError
DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))


def file_size(path):
    return os.stat(path).st_size

def is_already_sparse(path):
    "Returns True if a file has fewer blocks allocated than its size requires"
    st = os.stat(path)
    # st_blocks counts 512 byte units whatever the file system block size
    return st.st_blocks*512 < st.st_size

def check_not_sparse(path):
    if is_already_sparse(path):
        raise AlreadySparseError("'%s' is already sparse" % path)

def punch_hole(path, offset, length):
    "Deallocates a byte span of a file, keeping its size"
    if DEBUG&8: log("punch_hole: %d bytes @%Xh in %s", length, offset, path)
    utils.run('fallocate', '--punch-hole', '--keep-size', '--offset', offset, '--length', length, path)

def sparsify(path, free):
    """Punches a hole for every free range of an image (a RangeSet), except a
    range starting at byte zero. Returns the count of bytes released.
    The first failure aborts: holes already punched stay."""
    done = 0
    for r in free:
        if not r.begin:
            if DEBUG&8: log("sparsify: skipped free range %s at image start", r)
            continue
        punch_hole(path, r.begin, r.length)
        done += r.length
    if DEBUG&8: log("sparsify: released %d bytes in %s", done, path)
    return done
