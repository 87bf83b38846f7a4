#! /usr/bin/env python3
#
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

import logging
import sys

import click

from abootimg import abootimg_version, config, image, sections
from abootimg.dumpinfo import dump_bootinfo, dump_dtbinfo

MIN_PYTHON_VERSION = (3, 6)
if sys.version_info < MIN_PYTHON_VERSION:
    sys.exit("Python %s.%s or newer is required by abootimg."
             % MIN_PYTHON_VERSION)

DEFAULT_CONFIG = "bootimg.cfg"
DEFAULT_KERNEL = "zImage"
DEFAULT_RAMDISK = "initrd.gz"
DEFAULT_SECOND = "stage2.img"
DEFAULT_DTBS = "platform"
DEFAULT_SIGNATURE = "signature"


@click.argument('imgfile')
@click.option('-o', '--outfile', metavar='filename', required=False,
              help='Save image information to outfile in YAML format')
@click.option('-s', '--silent', default=False, is_flag=True,
              help='Do not print image information to output')
@click.command(help='Print boot image header and layout information')
def info(imgfile, outfile, silent):
    with image.BootImage.open(imgfile, 'rb', sink=print) as img:
        dump_bootinfo(img, outfile, silent)


@click.argument('imgfile')
@click.command(help='Print the device tree table of a boot image')
def dtbs(imgfile):
    with image.BootImage.open(imgfile, 'rb', sink=print) as img:
        dump_dtbinfo(img)


@click.argument('signature', default=DEFAULT_SIGNATURE, required=False)
@click.argument('dtbs', default=DEFAULT_DTBS, required=False)
@click.argument('second', default=DEFAULT_SECOND, required=False)
@click.argument('ramdisk', default=DEFAULT_RAMDISK, required=False)
@click.argument('kernel', default=DEFAULT_KERNEL, required=False)
@click.argument('cfgfile', default=DEFAULT_CONFIG, required=False)
@click.argument('imgfile')
@click.command(help='Extract the config file, kernel, ramdisk, second '
                    'stage, device trees and signature of a boot image. '
                    'Device trees are written to DTBS.dtbh and '
                    'DTBS.dtb_p<n>')
def extract(imgfile, cfgfile, kernel, ramdisk, second, dtbs, signature):
    with image.BootImage.open(imgfile, 'rb', sink=print) as img:
        config.write_config(img, cfgfile)
        sections.extract_sections(img, kernel=kernel, ramdisk=ramdisk,
                                  second=second, dtbs=dtbs,
                                  signature=signature)


def section_options(required):
    """Options shared by update and create"""
    def decorator(f):
        for option in reversed([
            click.option('-c', '--config-arg', 'config_args', multiple=True,
                         metavar='"param=value"',
                         help='Header value, may be given several times'),
            click.option('-f', '--config', 'cfgfile', metavar='filename',
                         help='Config file with header values'),
            click.option('-k', '--kernel', metavar='filename',
                         required=required, help='Kernel image'),
            click.option('-r', '--ramdisk', metavar='filename',
                         required=required, help='Ramdisk image'),
            click.option('-s', '--second', metavar='filename',
                         help='Second stage image'),
            click.option('-d', '--dtbs', metavar='prefix',
                         help='Device trees, read from <prefix>.dtbh and '
                              '<prefix>.dtb_p<n>'),
        ]):
            f = option(f)
        return f
    return decorator


@click.argument('imgfile')
@section_options(required=False)
@click.command(help='Update a boot image with the given header values and '
                    'sections. The image has to be a valid Android Boot '
                    'Image.')
def update(imgfile, config_args, cfgfile, kernel, ramdisk, second, dtbs):
    with image.BootImage.open(imgfile, 'r+b', sink=print) as img:
        config.update_header(img, cfgfile, config_args)
        sections.load_sections(img, kernel=kernel, ramdisk=ramdisk,
                               second=second, dtbs=dtbs)
        img.save()


@click.argument('imgfile')
@section_options(required=True)
@click.command(help='Create a new boot image from scratch. Kernel and '
                    'ramdisk are mandatory.')
def create(imgfile, config_args, cfgfile, kernel, ramdisk, second, dtbs):
    with image.BootImage.create(imgfile, sink=print) as img:
        config.update_header(img, cfgfile, config_args)
        sections.load_sections(img, kernel=kernel, ramdisk=ramdisk,
                               second=second, dtbs=dtbs)
        img.check()
        img.save()


class ShortNamesGroup(click.Group):
    """Command group that also answers to the one letter names of the
    info, extract and update commands."""

    short_names = {
        "i": "info",
        "x": "extract",
        "u": "update",
    }

    def list_commands(self, ctx):
        return sorted(set(self.commands) | set(self.short_names))

    def get_command(self, ctx, cmd_name):
        name = self.short_names.get(cmd_name, cmd_name)
        return super().get_command(ctx, name)


@click.command(help='Print abootimg version information')
def version():
    print(abootimg_version)


@click.option('-v', '--verbose', default=False, is_flag=True,
              help='Print layout debugging information')
@click.command(cls=ShortNamesGroup,
               context_settings=dict(help_option_names=['-h', '--help']))
def abootimg(verbose):
    if verbose:
        logging.basicConfig(format='%(levelname)5s: %(message)s',
                            level=logging.DEBUG, stream=sys.stdout)


abootimg.add_command(info)
abootimg.add_command(dtbs)
abootimg.add_command(extract)
abootimg.add_command(update)
abootimg.add_command(create)
abootimg.add_command(version)


if __name__ == '__main__':
    abootimg()
