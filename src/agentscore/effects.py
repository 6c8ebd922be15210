"""Best-effort side effects.

Some writes are useful but never required for correctness: warming a cache,
filling in a wallet right after registration. They run at most once, are
never retried, and a failure is logged at WARNING instead of propagating.
Anything whose failure the caller must know about does not belong here.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def best_effort(label: str, operation: Awaitable[T]) -> T | None:
    """Await `operation`; return its result, or None if it raised."""
    try:
        return await operation
    except Exception as e:
        logger.warning("Best-effort %s failed: %s", label, e)
        return None
