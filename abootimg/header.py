# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Boot image header codec.
"""

import copy
import struct

from .errors import FormatError

BOOT_MAGIC = b"ANDROID!"
BOOT_MAGIC_SIZE = 8
BOOT_NAME_SIZE = 16
BOOT_ARGS_SIZE = 512
BOOT_ID_WORDS = 8

# magic, kernel_size, kernel_addr, ramdisk_size, ramdisk_addr, second_size,
# second_addr, tags_addr, page_size, dtbs_size, unused, name, cmdline, id
HEADER_FORMAT = '<{}s10I{}s{}s{}I'.format(BOOT_MAGIC_SIZE, BOOT_NAME_SIZE,
                                          BOOT_ARGS_SIZE, BOOT_ID_WORDS)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

HEADER_ITEMS = ("kernel_size", "kernel_addr", "ramdisk_size", "ramdisk_addr",
                "second_size", "second_addr", "tags_addr", "page_size",
                "dtbs_size", "unused")


class BootHeader():
    def __init__(self, magic=BOOT_MAGIC, kernel_size=0, kernel_addr=0,
                 ramdisk_size=0, ramdisk_addr=0, second_size=0,
                 second_addr=0, tags_addr=0, page_size=0, dtbs_size=0,
                 unused=0, name=b"", cmdline=b"", id=None):
        self.magic = magic
        self.kernel_size = kernel_size
        self.kernel_addr = kernel_addr
        self.ramdisk_size = ramdisk_size
        self.ramdisk_addr = ramdisk_addr
        self.second_size = second_size
        self.second_addr = second_addr
        self.tags_addr = tags_addr
        self.page_size = page_size
        self.dtbs_size = dtbs_size
        self.unused = unused
        # name and cmdline keep their raw bytes minus trailing NULs
        self.name = name
        self.cmdline = cmdline
        self.id = tuple(id) if id is not None else (0,) * BOOT_ID_WORDS

    def __repr__(self):
        return "<BootHeader kernel_size={}, ramdisk_size={}, " \
               "second_size={}, dtbs_size={}, page_size={}>".format(
                   self.kernel_size, self.ramdisk_size, self.second_size,
                   self.dtbs_size, self.page_size)

    def __eq__(self, other):
        if not isinstance(other, BootHeader):
            return NotImplemented
        return self.pack() == other.pack()

    @staticmethod
    def _cstring(raw):
        return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")

    @property
    def name_str(self):
        return self._cstring(self.name)

    @property
    def cmdline_str(self):
        return self._cstring(self.cmdline)

    def copy(self):
        return copy.copy(self)

    @classmethod
    def unpack(cls, data):
        """Decode a header from the first HEADER_SIZE bytes of data"""
        if len(data) < HEADER_SIZE:
            raise FormatError("cannot read image header ({} of {} bytes)"
                              .format(len(data), HEADER_SIZE))
        fields = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])
        words = fields[1:11]
        return cls(fields[0], *words,
                   name=fields[11].rstrip(b"\0"),
                   cmdline=fields[12].rstrip(b"\0"),
                   id=fields[13:])

    @classmethod
    def read(cls, stream):
        return cls.unpack(stream.read(HEADER_SIZE))

    def pack(self):
        if len(self.name) > BOOT_NAME_SIZE:
            raise FormatError("name is longer than {} bytes".format(
                BOOT_NAME_SIZE))
        if len(self.cmdline) > BOOT_ARGS_SIZE:
            raise FormatError("cmdline is longer than {} bytes".format(
                BOOT_ARGS_SIZE))
        try:
            return struct.pack(HEADER_FORMAT, self.magic,
                               *[getattr(self, k) for k in HEADER_ITEMS],
                               self.name, self.cmdline, *self.id)
        except struct.error as e:
            raise FormatError("cannot encode image header: {}".format(e))

    def check(self, fname=""):
        """Check the invariants every bootable header has to satisfy"""
        prefix = "{}: ".format(fname) if fname else ""
        if self.magic != BOOT_MAGIC:
            raise FormatError(prefix + "no Android Magic Value")
        if not self.kernel_size:
            raise FormatError(prefix + "kernel size is null")
        if not self.ramdisk_size:
            raise FormatError(prefix + "ramdisk size is null")
        if not self.page_size:
            raise FormatError(prefix + "Image page size is null")
