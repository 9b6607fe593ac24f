# src/pipeline/dedup.py — v1
"""Request collapsing for (document, stage) executions.

Concurrent calls with the same key share one in-flight task. Each caller
awaits it through asyncio.shield, so a caller that is cancelled (for
example a dropped HTTP connection) does not cancel the shared work.
Entries are released when the task settles, or after a timeout so that a
hung call cannot lock the key forever.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_S = 300.0


class Deduplicator:
    """Map of key to in-flight task."""

    def __init__(self, default_timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.default_timeout_s = default_timeout_s
        self._inflight: dict[Hashable, asyncio.Future[Any]] = {}

    async def run_exclusive(
        self,
        key: Hashable,
        fn: Callable[[], Awaitable[T]],
        timeout_s: float | None = None,
    ) -> T:
        """Run fn once per key at a time; concurrent callers get the same result.

        Args:
            key: Dedup key, normally (document_id, stage_id).
            fn: Zero-argument callable returning the awaitable to run.
            timeout_s: Seconds after which the entry is released even if
                fn has not settled. The running task is not cancelled.

        Returns:
            The result of the shared execution. Its exception, if any, is
            raised to every caller.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            loop = asyncio.get_running_loop()
            expiry = loop.call_later(
                self.default_timeout_s if timeout_s is None else timeout_s,
                self._expire,
                key,
                task,
            )

            def _settled(done: asyncio.Future[Any]) -> None:
                expiry.cancel()
                self._release(key, done)
                # Mark the exception retrieved when every caller went away.
                if not done.cancelled():
                    done.exception()

            task.add_done_callback(_settled)
            logger.debug("Started exclusive execution for %s", key)
        else:
            logger.info("Joining in-flight execution for %s", key)
        return await asyncio.shield(task)

    def _release(self, key: Hashable, task: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def _expire(self, key: Hashable, task: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is task:
            logger.warning("Releasing %s after timeout; execution still running", key)
            del self._inflight[key]

    def is_running(self, key: Hashable) -> bool:
        return key in self._inflight

    @property
    def active_count(self) -> int:
        return len(self._inflight)

    def active_keys(self) -> list[Hashable]:
        return list(self._inflight)

    def clear(self) -> None:
        """Forget every entry. Running tasks are left to finish."""
        self._inflight.clear()
