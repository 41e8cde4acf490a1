from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Sequence, Tuple, Type, TypeVar

from adapters.errors import AdapterError

LOG = logging.getLogger(__name__)

T = TypeVar("T")


def _close_connection(conn: Any) -> None:
    conn.close()


class BlockingConnectionPool:
    """Bounded pool of DB-API connections driven from worker threads.

    A connection goes back to the idle list only when its borrower finished
    cleanly or raised one of ``healthy_errors`` (statement-level failures that
    leave the session usable). Anything else closes it and the
    next checkout opens a fresh one.
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        max_size: int = 10,
        close: Callable[[Any], None] = _close_connection,
        healthy_errors: Sequence[Type[BaseException]] = (),
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._factory = factory
        self._close = close
        self._healthy_errors: Tuple[Type[BaseException], ...] = (AdapterError, *healthy_errors)
        self.max_size = max_size
        self._idle: List[Any] = []
        self._semaphore = asyncio.Semaphore(max_size)
        self._closed = False

    async def open(self) -> None:
        conn = await asyncio.to_thread(self._factory)
        self._idle.append(conn)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        if self._closed:
            raise RuntimeError("connection pool is closed")
        async with self._semaphore:
            conn = self._idle.pop() if self._idle else await asyncio.to_thread(self._factory)
            reusable = True
            try:
                yield conn
            except asyncio.CancelledError:
                # The worker thread may still be using the connection.
                reusable = False
                raise
            except Exception as exc:
                if not isinstance(exc, self._healthy_errors):
                    reusable = False
                    LOG.info("discarding pooled connection after %s", type(exc).__name__)
                    await self._discard(conn)
                raise
            finally:
                if reusable and not self._closed:
                    self._idle.append(conn)
                elif reusable:
                    await self._discard(conn)

    async def _discard(self, conn: Any) -> None:
        try:
            await asyncio.to_thread(self._close, conn)
        except Exception as exc:
            LOG.warning("failed to close pooled connection: %s", type(exc).__name__)

    async def run(self, fn: Callable[[Any], T]) -> T:
        async with self.connection() as conn:
            return await asyncio.to_thread(fn, conn)

    async def close(self) -> None:
        self._closed = True
        idle, self._idle = self._idle, []
        for conn in idle:
            await self._discard(conn)
