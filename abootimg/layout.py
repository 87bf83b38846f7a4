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
Page layout of a boot image.

    +-----------------+
    | boot header     | 1 page
    +-----------------+
    | kernel          | n pages
    +-----------------+
    | ramdisk         | m pages
    +-----------------+
    | second stage    | o pages
    +-----------------+
    | device trees    | p pages
    +-----------------+
    | signature       | 1 page
    +-----------------+

Offsets are derived from the section sizes and must be recomputed
whenever a size or the page size changes.
"""

from collections import namedtuple

from .errors import FormatError

Layout = namedtuple('Layout', ['page_size', 'n', 'm', 'o', 'p',
                               'kernel_off', 'ramdisk_off', 'second_off',
                               'dtbs_off', 'signature_off', 'total_size'])


def page_count(size, page_size):
    if not page_size:
        raise FormatError("Image page size is null")
    return (size + page_size - 1) // page_size


def align_up(size, page_size):
    return page_count(size, page_size) * page_size


def padding(size, page_size):
    """Number of zero bytes needed after `size` bytes to reach a page
    boundary."""
    return align_up(size, page_size) - size


def layout(page_size, kernel_size, ramdisk_size, second_size, dtbs_size):
    """Compute page counts and byte offsets of every section"""
    if not page_size:
        raise FormatError("Image page size is null")
    n = page_count(kernel_size, page_size)
    m = page_count(ramdisk_size, page_size)
    o = page_count(second_size, page_size)
    p = page_count(dtbs_size, page_size)
    signature_off = (1 + n + m + o + p) * page_size
    return Layout(page_size=page_size, n=n, m=m, o=o, p=p,
                  kernel_off=page_size,
                  ramdisk_off=(1 + n) * page_size,
                  second_off=(1 + n + m) * page_size,
                  dtbs_off=(1 + n + m + o) * page_size,
                  signature_off=signature_off,
                  total_size=signature_off + page_size)


def header_layout(header):
    return layout(header.page_size, header.kernel_size, header.ramdisk_size,
                  header.second_size, header.dtbs_size)
