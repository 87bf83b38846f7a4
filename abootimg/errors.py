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
Errors raised while reading, laying out or writing a boot image.

They are click exceptions so the command line reports them as
``Error: <message>`` without having to translate them.
"""

import click


class BootImageError(click.ClickException):
    """Base class of every boot image error"""


class FormatError(BootImageError):
    """The image, a DTB table or a header value is malformed"""


class CapacityError(BootImageError):
    """The target cannot hold the resulting image"""


class ConfigError(BootImageError):
    """A configuration line is malformed or unknown"""


class IoError(BootImageError):
    """A file or device could not be opened, read, written or seeked"""

    @classmethod
    def wrap(cls, path, err):
        reason = err.strerror or str(err)
        return cls("{}: {}".format(path, reason))
