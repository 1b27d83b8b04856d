"""
Per-provider instance cache.

Provider clients are expensive to build (building one may fetch the discovery
document), so each one is built lazily on first use and then reused for the life
of the process.

Guarantees:
- the factory runs at most once at a time per key; concurrent first callers
  all await the same build and observe the same instance
- a successful build is kept forever (until `invalidate`)
- a failed build is not cached, the next caller builds again
- a caller being cancelled does not cancel a build other callers await

Instances must be used from a single event loop.
"""

import asyncio
import functools
import threading
from typing import Awaitable, Callable, Dict, Generic, List, TypeVar

from loguru import logger

LOG_PREFIX = "[ProviderCache]"

T = TypeVar("T")


class ProviderInstanceCache(Generic[T]):
    """Lazily built, write-once instances keyed by provider name."""

    def __init__(self, factory: Callable[[str], Awaitable[T]]):
        self._factory = factory
        self._guard = threading.Lock()
        self._builds: Dict[str, "asyncio.Future[T]"] = {}

    async def get(self, name: str) -> T:
        with self._guard:
            build = self._builds.get(name)
            if build is None:
                build = asyncio.ensure_future(self._factory(name))
                build.add_done_callback(functools.partial(self._forget_failed, name))
                self._builds[name] = build
                logger.debug(f"{LOG_PREFIX} Building instance for provider: {name}")

        return await asyncio.shield(build)

    def _forget_failed(self, name: str, build: "asyncio.Future[T]") -> None:
        if not build.cancelled() and build.exception() is None:
            return
        with self._guard:
            if self._builds.get(name) is build:
                del self._builds[name]
        logger.warning(f"{LOG_PREFIX} Building instance for provider {name} failed, will retry on next use")

    def invalidate(self, name: str | None = None) -> None:
        """Drop one cached instance, or all of them."""
        with self._guard:
            if name is None:
                self._builds.clear()
            else:
                self._builds.pop(name, None)
        logger.info(f"{LOG_PREFIX} Invalidated {name or 'all providers'}")

    def cached(self) -> List[str]:
        """Names whose instance has been built successfully."""
        with self._guard:
            return [
                name
                for name, build in self._builds.items()
                if build.done() and not build.cancelled() and build.exception() is None
            ]
