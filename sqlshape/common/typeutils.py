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
from typing import Any, Callable, Sequence, TypeVar


TC = TypeVar("TC", bound=Callable[..., Any])


def chain_decorators(
    funcs: Sequence[Callable[[TC], TC]]
) -> Callable[[TC], TC]:
    def f(func: TC) -> TC:
        for dec in reversed(funcs):
            func = dec(func)
        return func

    return f
