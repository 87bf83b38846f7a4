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
Boot image reading, validation and writing.
"""

import logging
import os
import stat

from .errors import FormatError, IoError
from .header import BootHeader, HEADER_SIZE
from .layout import header_layout, padding

DEFAULT_PAGE_SIZE = 2048
SIGNATURE_SIZE = 255
SIGNATURE_MAGIC = b"SEANDROIDENFORCE\0"
OPEN_MODES = ("rb", "r+b")

_log = logging.getLogger(__name__)


def default_signature():
    """Placeholder signature block: the SEANDROIDENFORCE marker followed by
    zeros. Nothing is signed."""
    return SIGNATURE_MAGIC + bytes(SIGNATURE_SIZE - len(SIGNATURE_MAGIC))


def probe_size(stream):
    """Return (size, is_blkdev) of an open file or block device"""
    st = os.fstat(stream.fileno())
    if stat.S_ISBLK(st.st_mode):
        pos = stream.tell()
        size = stream.seek(0, os.SEEK_END)
        stream.seek(pos)
        return size, True
    return st.st_size, False


class BootImage():
    """In-memory working set of a boot image.

    kernel, ramdisk and second hold raw bytes, dtbs a DtbRegion and
    signature the signature block. A section left as None is not written;
    on update its bytes stay where they already are in the file.
    """

    def __init__(self, fname, header=None, size=0, is_blkdev=False,
                 sink=None):
        self.fname = fname
        self.header = header if header is not None else \
            BootHeader(page_size=DEFAULT_PAGE_SIZE)
        # header as found in fname, None when creating a new image
        self.source = None
        self.size = size
        self.is_blkdev = is_blkdev
        # size may not grow: a block device or an explicit bootsize
        self.fixed_size = is_blkdev
        self.stream = None
        self.sink = sink if sink is not None else _log.info
        self.kernel = None
        self.ramdisk = None
        self.second = None
        self.dtbs = None
        self.signature = None

    def __repr__(self):
        return "<BootImage fname={}, size={}, is_blkdev={}, header={}>" \
            .format(self.fname, self.size, self.is_blkdev, self.header)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @classmethod
    def open(cls, fname, mode='rb', sink=None, size_probe=probe_size):
        """Open an existing boot image and validate its header.

        mode is 'rb' to inspect or extract and 'r+b' to update in place.
        New images are started with create().
        """
        if mode not in OPEN_MODES:
            raise ValueError("Unsupported open mode: {}".format(mode))
        img = cls(fname, sink=sink)
        try:
            img.stream = open(fname, mode)
        except OSError as e:
            raise IoError.wrap(fname, e)
        try:
            img._read_header(size_probe)
        except BaseException:
            img.close()
            raise
        return img

    @classmethod
    def create(cls, fname, sink=None, size_probe=probe_size):
        """Start a new image with default header values.

        When fname is an existing block device its capacity becomes the
        fixed size of the image. Nothing is written until save().
        """
        img = cls(fname, sink=sink)
        try:
            st = os.stat(fname)
        except FileNotFoundError:
            return img
        except OSError as e:
            raise IoError.wrap(fname, e)
        if stat.S_ISBLK(st.st_mode):
            try:
                with open(fname, 'rb') as f:
                    img.size, img.is_blkdev = size_probe(f)
                img.fixed_size = img.is_blkdev
            except OSError as e:
                raise IoError.wrap(fname, e)
        return img

    def _read_header(self, size_probe):
        try:
            self.size, self.is_blkdev = size_probe(self.stream)
            self.fixed_size = self.is_blkdev
            self.stream.seek(0)
            self.header = BootHeader.read(self.stream)
        except OSError as e:
            raise IoError.wrap(self.fname, e)
        except FormatError as e:
            raise FormatError("{}: {}".format(self.fname, e.message))
        self.source = self.header.copy()
        self.check()

    def layout(self):
        return header_layout(self.header)

    def check(self):
        """Validate the header against the container size"""
        self.header.check(self.fname)
        total_size = self.layout().total_size
        if total_size > self.size:
            raise FormatError(
                "{}: sizes mismatches, total_size {} != img size {}"
                .format(self.fname, total_size, self.size))

    def read_at(self, offset, size, what):
        """Read size bytes of the source image at offset"""
        try:
            self.stream.seek(offset)
            data = self.stream.read(size)
        except OSError as e:
            raise IoError.wrap(self.fname, e)
        if len(data) != size:
            raise FormatError("{}: cannot read {}".format(self.fname, what))
        return data

    def close(self):
        """Release the stream and every section buffer"""
        if self.stream is not None:
            try:
                self.stream.close()
            finally:
                self.stream = None
        self.kernel = self.ramdisk = self.second = None
        self.dtbs = self.signature = None

    def _write_at(self, stream, offset, data):
        """Write data at offset, zero padded up to the next page boundary"""
        page_size = self.header.page_size
        try:
            stream.seek(offset)
            stream.write(data)
            stream.write(bytes(padding(len(data), page_size)))
        except OSError as e:
            raise IoError.wrap(self.fname, e)

    def write(self, stream):
        """Serialize the header and every loaded section to stream.

        Every offset comes from the layout of the current header.
        """
        hdr = self.header
        lay = self.layout()
        if HEADER_SIZE > hdr.page_size:
            raise FormatError("{}: page size {} is smaller than the header"
                              .format(self.fname, hdr.page_size))

        self.sink("Writing Boot Image {}".format(self.fname))
        self.sink("   header {}".format(HEADER_SIZE))
        self._write_at(stream, 0, hdr.pack())

        sections = (
            ("kernel", self.kernel, hdr.kernel_size, lay.kernel_off),
            ("ramdisk", self.ramdisk, hdr.ramdisk_size, lay.ramdisk_off),
            ("second", self.second, hdr.second_size, lay.second_off),
        )
        for name, data, size, offset in sections:
            if data is None or not size:
                continue
            if len(data) != size:
                raise FormatError("{}: {} is {} bytes but the header "
                                  "declares {}".format(self.fname, name,
                                                       len(data), size))
            self.sink("   {} {} at 0x{:08x}".format(name, size, offset))
            self._write_at(stream, offset, data)

        if self.dtbs is not None and hdr.dtbs_size:
            self.sink("   dtbs {} at 0x{:08x}".format(hdr.dtbs_size,
                                                      lay.dtbs_off))
            if self.dtbs.raw is not None:
                # copied forward unchanged, entries keep their offsets
                self._write_at(stream, lay.dtbs_off, self.dtbs.raw)
            else:
                table = self.dtbs.table
                self._write_at(stream, lay.dtbs_off, table.pack())
                for entry, blob in zip(table.entries, self.dtbs.blobs):
                    _log.debug("dtb %d bytes at 0x%08x", len(blob),
                               lay.dtbs_off + entry.offset)
                    self._write_at(stream, lay.dtbs_off + entry.offset, blob)

        signature = self.signature if self.signature is not None else \
            default_signature()
        self.sink("   signature {} at 0x{:08x}".format(len(signature),
                                                       lay.signature_off))
        self._write_at(stream, lay.signature_off, signature)
        try:
            stream.flush()
        except OSError as e:
            raise IoError.wrap(self.fname, e)

    def save(self):
        """Write the image to fname.

        An image opened for update is rewritten through its own stream,
        otherwise fname is opened for writing only now.
        """
        self.header.check(self.fname)
        if self.stream is not None and self.stream.writable():
            self.write(self.stream)
            return
        mode = 'r+b' if self.is_blkdev else 'wb'
        try:
            with open(self.fname, mode) as f:
                self.write(f)
        except OSError as e:
            raise IoError.wrap(self.fname, e)


def open_and_validate(fname, mode='rb', sink=None, size_probe=probe_size):
    return BootImage.open(fname, mode, sink=sink, size_probe=size_probe)

