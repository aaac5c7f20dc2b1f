from __future__ import annotations

import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await *value* when a sync-or-async callback handed back an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value
