from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from expert_runtime.errors import ToolNotFound

T = TypeVar("T")


async def invoke_first_available(
    candidates: Sequence[str], call: Callable[[str], Awaitable[T]]
) -> T:
    """Call `call` with each candidate name until one is found.

    A :class:`ToolNotFound` moves on to the next candidate; any other error is
    raised immediately without trying the rest.
    """

    if not candidates:
        raise ToolNotFound("No candidate names to invoke")
    for name in candidates:
        try:
            return await call(name)
        except ToolNotFound:
            continue
    raise ToolNotFound(f"None of the candidate names exist: {', '.join(candidates)}")
