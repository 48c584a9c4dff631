#
# This source file is part of the sqlshape open source project.
#
# Copyright 2024-present the sqlshape authors.
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
#


from __future__ import annotations

import functools

import async_solipsism


def with_fake_event_loop(f):
    # async_solpsism creates an event loop with, among other things,
    # a totally fake clock which starts at 0.
    @functools.wraps(f)
    def new(*args, **kwargs):
        loop = async_solipsism.EventLoop()
        try:
            loop.run_until_complete(f(*args, **kwargs))
        finally:
            loop.close()

    return new
