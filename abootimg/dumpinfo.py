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
Print header, layout and device tree table information of a boot image.
"""

import yaml

from abootimg import sections
from abootimg.errors import IoError

_MB = 0x100000
ENTRY_ITEMS = ("chip_id", "platform_id", "subtype_id", "hw_rev",
               "hw_rev_end", "offset", "dtb_size")


def collect_bootinfo(img):
    """Gather the information shown by dump_bootinfo in a dict"""
    hdr = img.header
    lay = img.layout()
    header = {
        "kernel_size": hdr.kernel_size,
        "kernel_addr": hdr.kernel_addr,
        "ramdisk_size": hdr.ramdisk_size,
        "ramdisk_addr": hdr.ramdisk_addr,
        "second_size": hdr.second_size,
        "second_addr": hdr.second_addr,
        "tags_addr": hdr.tags_addr,
        "page_size": hdr.page_size,
        "dtbs_size": hdr.dtbs_size,
        "unused": hdr.unused,
        "name": hdr.name_str,
        "cmdline": hdr.cmdline_str,
        "id": list(hdr.id),
    }
    pages = {"kernel": lay.n, "ramdisk": lay.m, "second": lay.o,
             "dtbs": lay.p}
    layout = {
        "kernel_offset": lay.kernel_off,
        "ramdisk_offset": lay.ramdisk_off,
        "second_offset": lay.second_off,
        "dtbs_offset": lay.dtbs_off,
        "signature_offset": lay.signature_off,
        "total_size": lay.total_size,
    }
    return {"file": img.fname,
            "block_device": img.is_blkdev,
            "image_size": img.size,
            "header": header,
            "pages": pages,
            "layout": layout}


def _size_line(key, size, pages):
    return "   {:<14}{} bytes ({:.2f} MB), {} pages".format(
        key + ":", size, size / _MB, pages)


def dump_bootinfo(img, outfile=None, silent=False):
    """Print the header and layout of an opened image, optionally saving
    them to outfile in YAML format."""
    info = collect_bootinfo(img)

    if outfile is not None:
        try:
            with open(outfile, "w") as outf:
                # sort_keys - from pyyaml 5.1
                yaml.dump(info, outf, sort_keys=False)
        except OSError as e:
            raise IoError.wrap(outfile, e)

    if silent:
        return info

    header = info["header"]
    pages = info["pages"]
    layout = info["layout"]

    print("\nAndroid Boot Image Info:\n")
    print("* file name = {} {}\n".format(
        img.fname, "[block device]" if img.is_blkdev else ""))
    print("* image size = {} bytes ({:.2f} MB)".format(
        img.size, img.size / _MB))

    print("\n<boot_img_hdr>")
    print(_size_line("kernel_size", header["kernel_size"], pages["kernel"]))
    print("   kernel_addr:  0x{:08x}".format(header["kernel_addr"]))
    print(_size_line("ramdisk_size", header["ramdisk_size"],
                     pages["ramdisk"]))
    print("   ramdisk_addr: 0x{:08x}".format(header["ramdisk_addr"]))
    print(_size_line("second_size", header["second_size"], pages["second"]))
    print("   second_addr:  0x{:08x}".format(header["second_addr"]))
    print("   tags_addr:    0x{:08x}".format(header["tags_addr"]))
    print("   page_size:    {} bytes".format(header["page_size"]))
    print(_size_line("dtbs_size", header["dtbs_size"], pages["dtbs"]))
    print("   unused[0]:    {}".format(header["unused"]))
    print("   name:         {}\n".format(header["name"]))
    if header["cmdline"]:
        print("   cmdline:      {}\n".format(header["cmdline"]))
    else:
        print("   cmdline       empty\n")
    print("   id[8] 0x" + "".join("{:04X}".format(w) for w in header["id"]))

    print("\n<boot_img layout>")
    print("   kernel offset     0x{:08x}".format(layout["kernel_offset"]))
    print("   ramdisk offset:   0x{:08x}".format(layout["ramdisk_offset"]))
    print("   secondary offset: 0x{:08x}".format(layout["second_offset"]))
    print("   dtbs offset:      0x{:08x}".format(layout["dtbs_offset"]))
    print("   signature offset: 0x{:08x}".format(layout["signature_offset"]))
    print()
    return info


def dump_dtbinfo(img):
    """Print the device tree table of an opened image"""
    region = sections.read_section(img, "dtbs")
    if region is None:
        print("{}: no device tree table".format(img.fname))
        return None

    table = region.table
    print("\n<dtbh_header Info>")
    print("  magic:0x{:08x}, version:0x{:08x}, num_entries:0x{:08x}".format(
        table.magic, table.version, table.num_entries))
    for i, entry in enumerate(table.entries):
        print("\ndt_entry[{:02d}]".format(i))
        for key in ENTRY_ITEMS:
            label = "dtb size" if key == "dtb_size" else key
            print("{:>15}: 0x{:08x}".format(label, getattr(entry, key)))
    print()
    return table
