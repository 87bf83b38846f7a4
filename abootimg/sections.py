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
Loading and extracting the sections of a boot image.

When a section is replaced, every following section moves in the new
layout while the source file still holds it at its old offset. Sections
that are kept are therefore read from the source at offsets computed
from the source header and written at offsets computed from the final
header.
"""

import logging

from .dtbs import DtbRegion, DtbTable
from .errors import CapacityError, FormatError, IoError
from .image import SIGNATURE_SIZE, default_signature
from .layout import header_layout

DTB_TABLE_EXT = "dtbh"

_log = logging.getLogger(__name__)


def dtb_table_path(prefix):
    return "{}.{}".format(prefix, DTB_TABLE_EXT)


def dtb_blob_path(prefix, index):
    return "{}.dtb_p{}".format(prefix, index)


def read_file(path):
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise IoError.wrap(path, e)


def write_file(path, data):
    try:
        with open(path, 'wb') as f:
            f.write(data)
    except OSError as e:
        raise IoError.wrap(path, e)


def load_dtbs(prefix, page_size, sink):
    """Load a DTB table from <prefix>.dtbh and its blobs from
    <prefix>.dtb_p<i>, then pack the blobs after the table page."""
    sink("reading dtbs ...")
    path = dtb_table_path(prefix)
    sink(".. DTBH from {}".format(path))
    data = read_file(path)
    if len(data) > page_size:
        raise FormatError("{}: DTB table is {} bytes, more than a {} bytes "
                          "page".format(path, len(data), page_size))
    try:
        table = DtbTable.unpack(data, page_size)
    except FormatError as e:
        raise FormatError("{}: {}".format(path, e.message))

    blobs = []
    for i, entry in enumerate(table.entries):
        path = dtb_blob_path(prefix, i)
        sink(" .. dtb {} offset 0x{:08x}, size 0x{:08x}".format(
            path, entry.offset, entry.dtb_size))
        blobs.append(read_file(path))

    region = DtbRegion.build(table, blobs, page_size)
    for entry in region.table.entries:
        sink(" .. new offset 0x{:08x}, size 0x{:08x}".format(
            entry.offset, entry.dtb_size))
    return region


def load_sections(img, kernel=None, ramdisk=None, second=None, dtbs=None):
    """Populate the section buffers of img and update its header sizes.

    kernel, ramdisk and second name replacement files, dtbs the prefix of
    a DTB table set. A section without a replacement is copied from the
    source image when a preceding section was loaded, and left unset
    otherwise. The device tree region is always carried over when present.

    Returns the layout of the resulting image.
    """
    hdr = img.header
    src = img.source
    page_size = hdr.page_size
    if not page_size:
        raise FormatError("{}: Image page size is null".format(img.fname))

    old = header_layout(src) if src is not None else None
    # a new page size moves every section of the source
    shifted = src is not None and src.page_size != page_size
    if shifted:
        _log.debug("page size changes from %d to %d", src.page_size,
                   page_size)

    def copy_forward(what, size, offset):
        img.sink(" copy  {} {} bytes from 0x{:08x}".format(what, size,
                                                           offset))
        return img.read_at(offset, size, what)

    if kernel:
        img.sink("reading kernel from {}".format(kernel))
        img.kernel = read_file(kernel)
        hdr.kernel_size = len(img.kernel)
    elif shifted and src.kernel_size:
        img.kernel = copy_forward("kernel", src.kernel_size, old.kernel_off)

    if ramdisk:
        img.sink("reading ramdisk from {}".format(ramdisk))
        img.ramdisk = read_file(ramdisk)
        hdr.ramdisk_size = len(img.ramdisk)
    elif src is not None and src.ramdisk_size and \
            (img.kernel is not None or shifted):
        img.ramdisk = copy_forward("ramdisk", src.ramdisk_size,
                                   old.ramdisk_off)

    if second:
        img.sink("reading second stage from {}".format(second))
        img.second = read_file(second)
        hdr.second_size = len(img.second)
    elif src is not None and src.second_size and \
            (img.kernel is not None or img.ramdisk is not None or shifted):
        img.second = copy_forward("second", src.second_size,
                                  old.second_off)

    if dtbs:
        img.dtbs = load_dtbs(dtbs, page_size, img.sink)
        hdr.dtbs_size = img.dtbs.size
    elif src is not None and src.dtbs_size:
        data = copy_forward("dtbs", src.dtbs_size, old.dtbs_off)
        try:
            img.dtbs = DtbRegion.parse(data, src.page_size)
        except FormatError as e:
            raise FormatError("{}: {}".format(img.fname, e.message))
        if shifted:
            hdr.dtbs_size = img.dtbs.relayout(page_size)

    img.signature = default_signature()

    lay = header_layout(hdr)
    _log.debug("new layout: %s", lay)
    if img.fixed_size and lay.total_size > img.size:
        raise CapacityError(
            "{}: updated is too big for the Boot Image ({} vs {} bytes)"
            .format(img.fname, lay.total_size, img.size))
    if not img.fixed_size:
        img.size = lay.total_size
    return lay


def read_section(img, name):
    """Read one section of an opened image.

    Returns bytes, a DtbRegion for 'dtbs', or None when the section is
    absent.
    """
    hdr = img.header
    lay = img.layout()
    if name == "kernel":
        return img.read_at(lay.kernel_off, hdr.kernel_size, name)
    if name == "ramdisk":
        return img.read_at(lay.ramdisk_off, hdr.ramdisk_size, name)
    if name == "second":
        if not hdr.second_size:
            return None
        return img.read_at(lay.second_off, hdr.second_size, name)
    if name == "dtbs":
        if not hdr.dtbs_size:
            return None
        data = img.read_at(lay.dtbs_off, hdr.dtbs_size, name)
        try:
            return DtbRegion.parse(data, hdr.page_size)
        except FormatError as e:
            raise FormatError("{}: {}".format(img.fname, e.message))
    if name == "signature":
        return img.read_at(lay.signature_off, SIGNATURE_SIZE, name)
    raise ValueError("Unknown section: {}".format(name))


def extract_dtbs(img, prefix):
    region = read_section(img, "dtbs")
    if region is None:
        return None
    path = dtb_table_path(prefix)
    img.sink("extracting DTBH {}".format(path))
    write_file(path, region.table.pack())
    for i, (entry, blob) in enumerate(zip(region.table.entries,
                                          region.blobs)):
        path = dtb_blob_path(prefix, i)
        img.sink(" .. dtb {} offset 0x{:08x}, size 0x{:08x}".format(
            path, entry.offset, entry.dtb_size))
        write_file(path, blob)
    return region


def extract_sections(img, kernel=None, ramdisk=None, second=None, dtbs=None,
                     signature=None):
    """Write the sections of an opened image to the given files.

    Absent sections (no second stage, no device trees) produce no file.
    """
    for name, path in (("kernel", kernel), ("ramdisk", ramdisk),
                       ("second", second), ("dtbs", dtbs),
                       ("signature", signature)):
        if not path:
            continue
        if name == "dtbs":
            extract_dtbs(img, path)
            continue
        data = read_section(img, name)
        if data is None:
            continue
        img.sink("extracting {} in {}".format(name, path))
        write_file(path, data)
