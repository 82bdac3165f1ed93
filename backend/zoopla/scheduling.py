# backend/zoopla/scheduling.py
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional

__all__ = ["IdentityRegistry", "ConcurrencyLimiter"]

log = logging.getLogger("zoopla.scheduling")

TaskFactory = Callable[[], Awaitable[object]]


class IdentityRegistry:
    """
    Run-scoped set of identity keys guarding at-most-once emission.

    `admit` must stay free of awaits: with cooperative scheduling the check and the
    insert are atomic only because nothing can interleave between them.
    """

    def __init__(self):
        self._keys = set()

    def admit(self, key: Optional[str]) -> bool:
        if not key or key in self._keys:
            return False
        self._keys.add(key)
        return True

    def __contains__(self, key) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class ConcurrencyLimiter:
    """
    Runs at most `max_concurrency` submitted tasks at once; the rest wait in
    submission order. Nothing is dropped, and a failing task only fails itself:
    its exception is logged and kept in `failures`.
    """

    def __init__(self, max_concurrency: int = 3):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self._sem = asyncio.Semaphore(max_concurrency)
        self.active = 0
        self.failures: List[BaseException] = []

    async def _run(self, factory: TaskFactory):
        async with self._sem:
            self.active += 1
            try:
                return await factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("TASK FAILED | %s: %s", type(e).__name__, e)
                self.failures.append(e)
                return None
            finally:
                self.active -= 1

    def submit(self, factory: TaskFactory) -> "asyncio.Task":
        return asyncio.ensure_future(self._run(factory))

    async def run_all(self, factories: Iterable[TaskFactory]) -> list:
        """Submit a batch and wait for every task in it."""
        tasks = [self.submit(f) for f in factories]
        if not tasks:
            return []
        return await asyncio.gather(*tasks)
