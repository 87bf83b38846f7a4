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

import pytest

from tests.constants import make_image, pattern


@pytest.fixture
def payloads():
    """Kernel, ramdisk and second stage whose sizes are not page aligned"""
    return {
        "kernel": pattern(9000, 1),
        "ramdisk": pattern(3000, 2),
        "second": pattern(1500, 3),
    }


@pytest.fixture
def boot_image(tmp_path, payloads):
    """A boot image with a second stage and a two entry DTB table"""
    path = tmp_path / "boot.img"
    path.write_bytes(make_image(payloads["kernel"], payloads["ramdisk"],
                                second=payloads["second"],
                                dtb_blobs=[pattern(5000, 4),
                                           pattern(100, 5)]))
    return path
