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

import struct

import pytest

from abootimg import sections
from abootimg.config import update_header
from abootimg.dtbs import DtbRegion
from abootimg.errors import CapacityError, FormatError, IoError
from abootimg.image import BootImage, open_and_validate
from abootimg.layout import header_layout
from tests.constants import DTBH_MAGIC, PAGE_SIZE, SIGNATURE, \
    make_dtb_region, make_image, pad, pattern, section_at, write_dtb_files

DTB_BLOBS = [pattern(5000, 4), pattern(100, 5)]


def update(path, **kwargs):
    with open_and_validate(str(path), 'r+b') as img:
        old = header_layout(img.header)
        lay = sections.load_sections(img, **kwargs)
        img.save()
    return old, lay


def test_larger_kernel_copies_following_sections(tmp_path, boot_image,
                                                 payloads):
    kernel = tmp_path / "zImage"
    kernel.write_bytes(pattern(20000, 9))

    old, lay = update(boot_image, kernel=str(kernel))

    assert lay.ramdisk_off != old.ramdisk_off
    assert lay.second_off != old.second_off
    assert lay.dtbs_off != old.dtbs_off
    data = boot_image.read_bytes()
    assert section_at(data, lay.kernel_off, 20000) == pattern(20000, 9)
    assert section_at(data, lay.ramdisk_off, 3000) == payloads["ramdisk"]
    assert section_at(data, lay.second_off, 1500) == payloads["second"]
    assert section_at(data, lay.dtbs_off, 5 * PAGE_SIZE) == \
        make_dtb_region(DTB_BLOBS)
    assert section_at(data, lay.signature_off, 255) == SIGNATURE
    assert len(data) == lay.total_size


def test_smaller_kernel_copies_following_sections(tmp_path, boot_image,
                                                  payloads):
    kernel = tmp_path / "zImage"
    kernel.write_bytes(pattern(10, 9))
    size = boot_image.stat().st_size

    old, lay = update(boot_image, kernel=str(kernel))

    assert lay.ramdisk_off < old.ramdisk_off
    with open_and_validate(str(boot_image)) as img:
        # the file is not truncated
        assert img.size == size
        assert sections.read_section(img, "kernel") == pattern(10, 9)
        assert sections.read_section(img, "ramdisk") == payloads["ramdisk"]
        assert sections.read_section(img, "second") == payloads["second"]
        assert sections.read_section(img, "dtbs").blobs == DTB_BLOBS


def test_ramdisk_replacement_keeps_kernel(tmp_path, boot_image, payloads):
    ramdisk = tmp_path / "initrd.gz"
    ramdisk.write_bytes(pattern(7000, 8))

    with open_and_validate(str(boot_image), 'r+b') as img:
        sections.load_sections(img, ramdisk=str(ramdisk))
        # the kernel does not move and is left in place
        assert img.kernel is None
        assert img.second == payloads["second"]
        img.save()

    with open_and_validate(str(boot_image)) as img:
        assert sections.read_section(img, "kernel") == payloads["kernel"]
        assert sections.read_section(img, "ramdisk") == pattern(7000, 8)
        assert sections.read_section(img, "second") == payloads["second"]
        assert sections.read_section(img, "dtbs").blobs == DTB_BLOBS


def test_header_only_update(boot_image, payloads):
    before = boot_image.read_bytes()
    with open_and_validate(str(boot_image), 'r+b') as img:
        update_header(img, overrides=["cmdline = quiet"])
        sections.load_sections(img)
        assert img.kernel is None
        assert img.ramdisk is None
        assert img.second is None
        assert img.dtbs is not None
        img.save()
    after = boot_image.read_bytes()
    assert len(after) == len(before)
    assert after[PAGE_SIZE:] == before[PAGE_SIZE:]
    with open_and_validate(str(boot_image)) as img:
        assert img.header.cmdline_str == "quiet"


def test_header_only_update_keeps_packed_dtbs(tmp_path, payloads):
    """Blobs sharing a page, listed out of offset order, are carried over
    as they are"""
    first, second = pattern(16, 31), pattern(16, 32)
    table = struct.pack('<3I', DTBH_MAGIC, 2, 2)
    table += struct.pack('<7I2s2x', 0x1cfc, 0x50a6, 0, 0, 0,
                         PAGE_SIZE + 16, 16, b"\0\0")
    table += struct.pack('<7I2s2x', 0x1cfc, 0x50a6, 0, 1, 1,
                         PAGE_SIZE, 16, b"\0\0")
    region = pad(table) + second + first
    path = tmp_path / "boot.img"
    path.write_bytes(make_image(payloads["kernel"], payloads["ramdisk"],
                                dtb_region=region))
    before = path.read_bytes()

    with open_and_validate(str(path), 'r+b') as img:
        update_header(img, overrides=["cmdline = quiet"])
        sections.load_sections(img)
        img.save()

    after = path.read_bytes()
    assert after[PAGE_SIZE:] == before[PAGE_SIZE:]
    with open_and_validate(str(path)) as img:
        assert sections.read_section(img, "dtbs").blobs == [first, second]


def test_second_replacement(tmp_path, boot_image, payloads):
    second = tmp_path / "stage2.img"
    second.write_bytes(pattern(6000, 7))
    update(boot_image, second=str(second))
    with open_and_validate(str(boot_image)) as img:
        assert img.header.second_size == 6000
        assert sections.read_section(img, "ramdisk") == payloads["ramdisk"]
        assert sections.read_section(img, "second") == pattern(6000, 7)
        assert sections.read_section(img, "dtbs").blobs == DTB_BLOBS


def test_dtbs_replacement(tmp_path, boot_image, payloads):
    blobs = [pattern(3000, 11), pattern(2048, 12), pattern(1, 13)]
    prefix = str(tmp_path / "platform")
    write_dtb_files(prefix, blobs)

    with open_and_validate(str(boot_image), 'r+b') as img:
        sections.load_sections(img, dtbs=prefix)
        # table page, then 2 + 1 + 1 pages
        assert img.header.dtbs_size == 5 * PAGE_SIZE
        img.save()

    with open_and_validate(str(boot_image)) as img:
        region = sections.read_section(img, "dtbs")
        assert region.blobs == blobs
        assert region.table.num_entries == 3
        entries = region.table.entries
        assert [e.dtb_size for e in entries] == [3000, 2048, 1]
        for entry in entries:
            assert entry.offset % PAGE_SIZE == 0
        for prev, entry in zip(entries, entries[1:]):
            assert prev.offset + prev.dtb_size <= entry.offset
        assert sections.read_section(img, "second") == payloads["second"]


def test_dtbs_rewrite_is_stable(tmp_path, boot_image):
    prefix = str(tmp_path / "platform")
    write_dtb_files(prefix, DTB_BLOBS)
    before = boot_image.read_bytes()
    update(boot_image, dtbs=prefix)
    assert boot_image.read_bytes() == before


def test_dtbs_missing_blob(tmp_path, boot_image):
    prefix = str(tmp_path / "platform")
    write_dtb_files(prefix, DTB_BLOBS)
    (tmp_path / "platform.dtb_p1").unlink()
    with open_and_validate(str(boot_image), 'r+b') as img:
        with pytest.raises(IoError):
            sections.load_sections(img, dtbs=prefix)


def test_dtbs_table_larger_than_page(tmp_path, boot_image):
    prefix = str(tmp_path / "platform")
    (tmp_path / "platform.dtbh").write_bytes(bytes(PAGE_SIZE + 1))
    with open_and_validate(str(boot_image), 'r+b') as img:
        with pytest.raises(FormatError):
            sections.load_sections(img, dtbs=prefix)


def test_page_size_change_moves_everything(boot_image, payloads):
    with open_and_validate(str(boot_image), 'r+b') as img:
        update_header(img, overrides=["pagesize = 0x1000"])
        sections.load_sections(img)
        assert img.kernel == payloads["kernel"]
        img.save()

    with open_and_validate(str(boot_image)) as img:
        assert img.header.page_size == 4096
        assert sections.read_section(img, "kernel") == payloads["kernel"]
        assert sections.read_section(img, "ramdisk") == payloads["ramdisk"]
        assert sections.read_section(img, "second") == payloads["second"]
        region = sections.read_section(img, "dtbs")
        assert region.blobs == DTB_BLOBS
        assert [e.offset for e in region.table.entries] == [4096, 3 * 4096]


def test_capacity_exceeded_on_fixed_size(tmp_path, boot_image):
    kernel = tmp_path / "zImage"
    kernel.write_bytes(pattern(20000, 9))
    before = boot_image.read_bytes()

    with open_and_validate(str(boot_image), 'r+b') as img:
        update_header(img, overrides=["bootsize = {}".format(len(before))])
        with pytest.raises(CapacityError):
            sections.load_sections(img, kernel=str(kernel))

    assert boot_image.read_bytes() == before


def test_capacity_exceeded_on_block_device(tmp_path):
    kernel = tmp_path / "zImage"
    kernel.write_bytes(pattern(9000, 1))
    ramdisk = tmp_path / "initrd.gz"
    ramdisk.write_bytes(pattern(500, 2))
    target = tmp_path / "mmcblk0p9"
    target.write_bytes(b"\xff" * 4 * PAGE_SIZE)

    img = BootImage.create(str(target))
    # what a block device of 4 pages would report
    img.size, img.is_blkdev, img.fixed_size = 4 * PAGE_SIZE, True, True
    with img:
        with pytest.raises(CapacityError):
            sections.load_sections(img, kernel=str(kernel),
                                   ramdisk=str(ramdisk))
    assert target.read_bytes() == b"\xff" * 4 * PAGE_SIZE


def test_capacity_fits_block_device(tmp_path):
    kernel = tmp_path / "zImage"
    kernel.write_bytes(pattern(9000, 1))
    ramdisk = tmp_path / "initrd.gz"
    ramdisk.write_bytes(pattern(500, 2))
    target = tmp_path / "mmcblk0p9"
    target.write_bytes(b"\xff" * 10 * PAGE_SIZE)

    img = BootImage.create(str(target))
    img.size, img.is_blkdev, img.fixed_size = 10 * PAGE_SIZE, True, True
    with img:
        lay = sections.load_sections(img, kernel=str(kernel),
                                     ramdisk=str(ramdisk))
        img.save()
    assert img.size == 10 * PAGE_SIZE
    data = target.read_bytes()
    # bytes past the image are left alone
    assert len(data) == 10 * PAGE_SIZE
    assert data[lay.total_size:] == b"\xff" * (10 * PAGE_SIZE -
                                               lay.total_size)


def test_create_adopts_layout_size(tmp_path):
    kernel = tmp_path / "zImage"
    kernel.write_bytes(pattern(9000, 1))
    ramdisk = tmp_path / "initrd.gz"
    ramdisk.write_bytes(pattern(500, 2))
    with BootImage.create(str(tmp_path / "boot.img")) as img:
        lay = sections.load_sections(img, kernel=str(kernel),
                                     ramdisk=str(ramdisk))
        assert img.size == lay.total_size == 16384
        assert img.dtbs is None
        assert img.second is None


def test_null_page_size(boot_image):
    with open_and_validate(str(boot_image), 'r+b') as img:
        update_header(img, overrides=["pagesize = 0"])
        with pytest.raises(FormatError):
            sections.load_sections(img)


def test_extract_sections(tmp_path, boot_image, payloads):
    out = tmp_path / "out"
    out.mkdir()
    with open_and_validate(str(boot_image)) as img:
        sections.extract_sections(
            img, kernel=str(out / "zImage"), ramdisk=str(out / "initrd.gz"),
            second=str(out / "stage2.img"), dtbs=str(out / "platform"),
            signature=str(out / "signature"))

    assert (out / "zImage").read_bytes() == payloads["kernel"]
    assert (out / "initrd.gz").read_bytes() == payloads["ramdisk"]
    assert (out / "stage2.img").read_bytes() == payloads["second"]
    assert (out / "signature").read_bytes() == SIGNATURE
    assert (out / "platform.dtbh").read_bytes() == \
        make_dtb_region(DTB_BLOBS)[:12 + 2 * 32]
    assert (out / "platform.dtb_p0").read_bytes() == DTB_BLOBS[0]
    assert (out / "platform.dtb_p1").read_bytes() == DTB_BLOBS[1]


def test_extract_skips_absent_sections(tmp_path):
    path = tmp_path / "boot.img"
    path.write_bytes(make_image(pattern(3000, 1), pattern(3000, 2)))
    with open_and_validate(str(path)) as img:
        sections.extract_sections(img, second=str(tmp_path / "stage2.img"),
                                  dtbs=str(tmp_path / "platform"))
    assert not (tmp_path / "stage2.img").exists()
    assert not (tmp_path / "platform.dtbh").exists()


def test_extract_second_after_unaligned_sections(tmp_path):
    path = tmp_path / "boot.img"
    second = pattern(700, 3)
    path.write_bytes(make_image(pattern(3000, 1), pattern(3000, 2),
                                second=second))
    with open_and_validate(str(path)) as img:
        assert sections.read_section(img, "second") == second


def test_extracted_files_rebuild_same_image(tmp_path, boot_image):
    out = tmp_path / "out"
    out.mkdir()
    with open_and_validate(str(boot_image)) as img:
        sections.extract_sections(
            img, kernel=str(out / "zImage"), ramdisk=str(out / "initrd.gz"),
            second=str(out / "stage2.img"), dtbs=str(out / "platform"))
        header = img.header.copy()

    rebuilt = tmp_path / "rebuilt.img"
    with BootImage.create(str(rebuilt)) as img:
        img.header = header
        sections.load_sections(img, kernel=str(out / "zImage"),
                               ramdisk=str(out / "initrd.gz"),
                               second=str(out / "stage2.img"),
                               dtbs=str(out / "platform"))
        assert isinstance(img.dtbs, DtbRegion)
        img.save()
    assert rebuilt.read_bytes() == boot_image.read_bytes()
