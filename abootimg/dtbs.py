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
Device tree blob table (DTBH) codec.

The device tree region of a boot image starts with a table page holding
a small header and one entry per device tree blob. Each entry selects a
hardware revision range and locates its blob by an offset relative to the
start of the region:

    +----------------------------+  offset 0
    | magic, version, num_entries|
    | dt_entry[0..N-1]           |  1 page
    +----------------------------+  offset page_size
    | dtb 0                      |  padded to a page
    +----------------------------+
    | dtb 1 ...                  |
    +----------------------------+
"""

import logging
import struct
from collections import namedtuple

from .errors import FormatError
from .layout import page_count

DTBH_MAGIC = 0x48425444
DTBH_VERSION = 2

TABLE_HEADER_FORMAT = '<3I'
TABLE_HEADER_SIZE = struct.calcsize(TABLE_HEADER_FORMAT)
# Seven words and a 2-byte padding field, aligned to 4 bytes on the wire.
ENTRY_FORMAT = '<7I2s2x'
ENTRY_SIZE = struct.calcsize(ENTRY_FORMAT)

DtbEntry = namedtuple('DtbEntry', ['chip_id', 'platform_id', 'subtype_id',
                                   'hw_rev', 'hw_rev_end', 'offset',
                                   'dtb_size', 'padding'])
DtbEntry.__new__.__defaults__ = (0, 0, b"\0\0")

_log = logging.getLogger(__name__)


class DtbTable():
    def __init__(self, magic=DTBH_MAGIC, version=DTBH_VERSION, entries=None):
        self.magic = magic
        self.version = version
        self.entries = list(entries) if entries is not None else []

    def __repr__(self):
        return "<DtbTable magic=0x{:08x}, version=0x{:08x}, " \
               "num_entries={}>".format(self.magic, self.version,
                                        self.num_entries)

    @property
    def num_entries(self):
        return len(self.entries)

    @property
    def size(self):
        return TABLE_HEADER_SIZE + ENTRY_SIZE * self.num_entries

    @classmethod
    def unpack(cls, data, page_size=None):
        """Decode the table header and its entries from data.

        When page_size is given the table must fit in one page.
        """
        if len(data) < TABLE_HEADER_SIZE:
            raise FormatError("cannot read DTB table header")
        magic, version, num_entries = struct.unpack_from(
            TABLE_HEADER_FORMAT, data, 0)
        table_size = TABLE_HEADER_SIZE + ENTRY_SIZE * num_entries
        if page_size is not None and table_size > page_size:
            raise FormatError(
                "DTB table with {} entries ({} bytes) does not fit in a "
                "{} bytes page".format(num_entries, table_size, page_size))
        if len(data) < table_size:
            raise FormatError(
                "DTB table declares {} entries but only {} bytes are "
                "available".format(num_entries, len(data)))
        entries = [DtbEntry(*struct.unpack_from(
                        ENTRY_FORMAT, data,
                        TABLE_HEADER_SIZE + i * ENTRY_SIZE))
                   for i in range(num_entries)]
        return cls(magic, version, entries)

    def pack(self):
        buf = bytearray(struct.pack(TABLE_HEADER_FORMAT, self.magic,
                                    self.version, self.num_entries))
        for entry in self.entries:
            buf += struct.pack(ENTRY_FORMAT, *entry)
        return bytes(buf)


class DtbRegion():
    """A DTB table together with the blobs its entries describe.

    blobs[i] belongs to table.entries[i]. size is the number of bytes the
    region occupies in the boot image (the header's dtbs_size). raw holds
    the region as read from an image until its entries are laid out again.
    """

    def __init__(self, table, blobs, size, raw=None):
        if len(blobs) != table.num_entries:
            raise FormatError("DTB table has {} entries but {} blobs were "
                              "given".format(table.num_entries, len(blobs)))
        self.table = table
        self.blobs = list(blobs)
        self.size = size
        self.raw = raw

    def __repr__(self):
        return "<DtbRegion num_entries={}, size={}>".format(
            self.table.num_entries, self.size)

    @classmethod
    def parse(cls, data, page_size):
        """Split a device tree region read from an image.

        Entry offsets are relative to the start of data.
        """
        table = DtbTable.unpack(data, page_size)
        blobs = []
        for i, entry in enumerate(table.entries):
            end = entry.offset + entry.dtb_size
            if entry.offset < table.size or end > len(data):
                raise FormatError(
                    "dt_entry[{:02d}] offset 0x{:08x} size 0x{:08x} lies "
                    "outside the 0x{:x} bytes DTB region".format(
                        i, entry.offset, entry.dtb_size, len(data)))
            blobs.append(bytes(data[entry.offset:end]))
        return cls(table, blobs, len(data), raw=bytes(data))

    @classmethod
    def build(cls, table, blobs, page_size):
        """Create a region from a table and replacement blobs, packing the
        blobs after the table page."""
        region = cls(table, blobs, 0)
        region.relayout(page_size)
        return region

    def relayout(self, page_size):
        """Pack every blob on its own pages after the table page and
        rewrite the entries' offset and dtb_size accordingly.

        Returns the new region size.
        """
        if self.table.size > page_size:
            raise FormatError(
                "DTB table with {} entries does not fit in a {} bytes "
                "page".format(self.table.num_entries, page_size))
        p = 1
        for i, blob in enumerate(self.blobs):
            entry = self.table.entries[i]._replace(offset=p * page_size,
                                                   dtb_size=len(blob))
            _log.debug("dt_entry[%02d] offset 0x%08x, size 0x%08x",
                       i, entry.offset, entry.dtb_size)
            self.table.entries[i] = entry
            p += page_count(len(blob), page_size)
        self.size = p * page_size
        self.raw = None
        return self.size
