# -*- coding: utf-8 -*-
"Loop devices over image partitions, and file system type probing"

import os
from BMAPtools import utils
from BMAPtools.debug import log, warn
from BMAPtools.errors import CollaboratorFailure, LoopDeviceError
DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))


class LoopDevice(object):
    """Read-only loop device mapping a byte window of an image file.
    Use it as a context manager: the device is detached on exit."""
    def __init__ (self, image, offset, size):
        self.image = image
        self.offset = offset
        self.size = size
        self.name = None

    def __str__ (self):
        return "Loop device %s over '%s' @%Xh (%d bytes)" % (self.name, self.image, self.offset, self.size)

    def attach(self):
        try:
            s = utils.run('losetup', '--find', '--show', '--read-only',
                '--offset', self.offset, '--sizelimit', self.size, self.image)
        except CollaboratorFailure as e:
            raise LoopDeviceError("can't attach a loop device: %s" % e)
        self.name = s.strip()
        if not self.name:
            raise LoopDeviceError("losetup did not report a loop device")
        if DEBUG&2: log("attached %s", self)
        return self.name

    def detach(self):
        if not self.name: return
        utils.run('losetup', '--detach', self.name)
        if DEBUG&2: log("detached %s", self)
        self.name = None

    def __enter__ (self):
        self.attach()
        return self

    def __exit__ (self, exc_type, exc_value, tb):
        if exc_type is None:
            self.detach()
            return
        # an error is already propagating: don't hide it
        try:
            self.detach()
        except CollaboratorFailure as e:
            warn("can't detach %s: %s", self.name, e)


def probe_filesystem(device):
    "Returns the file system type found by blkid on a device, or '' if none"
    # blkid exits with 2 when it recognizes nothing
    fstype = utils.run('blkid', '-p', '-o', 'value', '-s', 'TYPE', device, ok_codes=(0, 2)).strip()
    if DEBUG&2: log("probe_filesystem: '%s' on %s", fstype, device)
    return fstype
