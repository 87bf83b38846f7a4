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
Boot image configuration: ``key = value`` lines that override header
fields, read from a config file or given one by one on the command line.

    bootsize = 0x500000
    pagesize = 0x800
    kerneladdr = 0x10008000
    ramdiskaddr = 0x11000000
    secondaddr = 0x10f00000
    tagsaddr = 0x10000100
    name = SYSMAGIC000K
    cmdline = console=ttyS0,115200
"""

import re

from .errors import CapacityError, ConfigError, IoError
from .header import BOOT_ARGS_SIZE, BOOT_NAME_SIZE

MAX_CONF_LEN = 4096

INT_KEYS = {
    'pagesize':    'page_size',
    'kerneladdr':  'kernel_addr',
    'ramdiskaddr': 'ramdisk_addr',
    'secondaddr':  'second_addr',
    'tagsaddr':    'tags_addr',
}
CONFIG_KEYS = ['bootsize', *INT_KEYS, 'name', 'cmdline']

config_re = re.compile(r"^[ \t]*([^ =\t]*)[ \t]*=[ \t]*(.*)$")
int_re = re.compile(r"^(?:0[xX](?P<hex>[0-9a-fA-F]+)|(?P<oct>0[0-7]*)|"
                    r"(?P<dec>[1-9][0-9]*))$")


def parse_int(value):
    """Decode an unsigned integer written in decimal, 0x hex or 0 octal"""
    value = value.strip()
    m = int_re.match(value)
    if not m:
        raise ConfigError("{} is not a valid integer".format(value))
    if m.group('hex'):
        result = int(m.group('hex'), 16)
    elif m.group('oct'):
        result = int(m.group('oct'), 8)
    else:
        result = int(m.group('dec'), 10)
    if not 0 <= result <= 0xffffffff:
        raise ConfigError("{} does not fit in 32 bits".format(value))
    return result


def _cstring(key, value, size):
    raw = value.encode('utf-8')
    if len(raw) >= size:
        raise ConfigError("{} length ({}) is too long (max {})".format(
            key, len(raw), size - 1))
    return raw


def update_header_entry(img, line):
    """Apply a single ``key = value`` line to img"""
    line = line.rstrip("\r\n")
    m = config_re.match(line)
    if not m or not m.group(1):
        raise ConfigError("{}: bad config entry".format(line.strip()))
    key, value = m.group(1), m.group(2)
    hdr = img.header

    if key == 'cmdline':
        hdr.cmdline = _cstring(key, value, BOOT_ARGS_SIZE)
    elif key == 'name':
        hdr.name = _cstring(key, value, BOOT_NAME_SIZE)
    elif key == 'bootsize':
        size = parse_int(value)
        if img.is_blkdev and img.size != size:
            raise CapacityError("{}: cannot change Boot Image size for a "
                                "block device".format(img.fname))
        img.size = size
        img.fixed_size = img.is_blkdev or bool(size)
    elif key in INT_KEYS:
        setattr(hdr, INT_KEYS[key], parse_int(value))
    else:
        raise ConfigError("{}: bad config entry, valid keys: {}".format(
            key, ", ".join(CONFIG_KEYS)))


def check_overrides(overrides):
    """Reject a set of command line overrides larger than MAX_CONF_LEN"""
    total = sum(len(item) + 1 for item in overrides)
    if total >= MAX_CONF_LEN:
        raise ConfigError("too many config parameters ({} bytes, max {})"
                          .format(total, MAX_CONF_LEN - 1))


def update_header(img, config_fname=None, overrides=()):
    """Apply the lines of config_fname, then every override, in order"""
    if config_fname:
        img.sink("reading config file {}".format(config_fname))
        try:
            with open(config_fname, 'r') as f:
                lines = f.readlines()
        except OSError as e:
            raise IoError.wrap(config_fname, e)
        for line in lines:
            if line.strip():
                update_header_entry(img, line)

    overrides = list(overrides)
    if overrides:
        check_overrides(overrides)
        img.sink("reading config args")
        for item in overrides:
            for line in item.splitlines():
                if line.strip():
                    update_header_entry(img, line)


def format_config(img):
    hdr = img.header
    lines = [
        "bootsize = 0x{:x}".format(img.size),
        "pagesize = 0x{:x}".format(hdr.page_size),
        "kerneladdr = 0x{:x}".format(hdr.kernel_addr),
        "ramdiskaddr = 0x{:x}".format(hdr.ramdisk_addr),
        "secondaddr = 0x{:x}".format(hdr.second_addr),
        "tagsaddr = 0x{:x}".format(hdr.tags_addr),
        "name = {}".format(hdr.name_str),
        "cmdline = {}".format(hdr.cmdline_str),
    ]
    return "\n".join(lines) + "\n"


def write_config(img, config_fname):
    img.sink("writing boot image config in {}".format(config_fname))
    try:
        with open(config_fname, 'w') as f:
            f.write(format_config(img))
    except OSError as e:
        raise IoError.wrap(config_fname, e)
