"""Worker pool - one execution lane per credential over a shared queue."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

import structlog

from app.engines.jobs.cancellation import CancellationToken

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class Lane:
    """One concurrent execution context, bound to at most one credential."""

    worker_id: int
    credential: Optional[str]
    label: str


@dataclass
class PoolStats:
    lanes: int
    total: int
    claimed: int
    cancelled: bool

    @property
    def unclaimed(self) -> int:
        return self.total - self.claimed


class WorkerPool(Generic[T]):
    """Runs a handler over a list of items with ``max(1, len(credentials))`` lanes.

    With fewer than two credentials there is a single sequential lane. With
    more, every lane pulls from one shared cursor, so faster lanes simply
    claim more items. Each lane checks the cancellation token before
    claiming; unclaimed items stay untouched for a later resume.
    """

    def __init__(
        self,
        credentials: Sequence[str],
        cancel_token: CancellationToken,
        label_prefix: str = "W",
    ):
        keys = list(credentials)
        if len(keys) >= 2:
            self.lanes = [
                Lane(worker_id=i + 1, credential=key, label=f"{label_prefix}{i + 1}")
                for i, key in enumerate(keys)
            ]
        else:
            self.lanes = [
                Lane(worker_id=0, credential=keys[0] if keys else None, label=f"{label_prefix}0")
            ]
        self.cancel_token = cancel_token
        self._items: Sequence[T] = []
        self._cursor = 0
        self._aborted = False

    @property
    def size(self) -> int:
        return len(self.lanes)

    @property
    def parallel(self) -> bool:
        return len(self.lanes) > 1

    def _claim(self) -> Optional[T]:
        if self._cursor >= len(self._items):
            return None
        item = self._items[self._cursor]
        self._cursor += 1
        return item

    async def run(
        self,
        items: Sequence[T],
        handler: Callable[[T, Lane], Awaitable[None]],
    ) -> PoolStats:
        """Process every item (or stop on cancellation) and return lane stats.

        If a handler raises, the other lanes stop claiming, finish their
        current item, and the first error is re-raised.
        """
        self._items = items
        self._cursor = 0
        self._aborted = False

        outcomes = await asyncio.gather(
            *(self._lane_loop(lane, handler) for lane in self.lanes),
            return_exceptions=True,
        )

        errors = [o for o in outcomes if isinstance(o, BaseException)]
        if errors:
            raise errors[0]

        return PoolStats(
            lanes=self.size,
            total=len(items),
            claimed=self._cursor,
            cancelled=self.cancel_token.cancelled,
        )

    async def _lane_loop(self, lane: Lane, handler: Callable[[T, Lane], Awaitable[None]]) -> None:
        while not self._aborted:
            if await self.cancel_token.check():
                return
            item = self._claim()
            if item is None:
                return
            try:
                await handler(item, lane)
            except Exception:
                self._aborted = True
                logger.error("Lane stopped on error", lane=lane.label)
                raise
