"""
Stream Splitter: One Async Byte Stream, Two Independent Readers.

    split(source) -> SplitStream(client, persist)

A pump task reads the source and appends every chunk to an unbounded
queue per branch, so a slow disk never stalls the caller's download and
a slow caller never stalls the disk write.

Branch Semantics:
    - Every chunk reaches every attached branch once, in source order.
    - A branch ends at end of stream, or raises the source's exception
      after the chunks it had already received.
    - aclose() (or cancellation of a reader waiting on the branch)
      detaches it: it stops receiving chunks and its queue is dropped.
      The other branch is unaffected.
    - When every branch has detached, the pump stops and closes the source.

SplitStream.drained() completes when both branches are finished, whether
by end of stream, error or detach.

Example:
    >>> split_stream = split(byte_stream)
    >>> asyncio.create_task(save(split_stream.persist))
    >>> return StreamingResponse(split_stream.client)
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterable, Callable, Optional, Tuple

from tts_saas.core.logging import debug, get_logger

_LOG = get_logger("tts-saas.splitter")

CLIENT = "client"
PERSIST = "persist"

_EOF = object()


class _Failure:
    __slots__ = ("exc",)

    def __init__(self, exc: BaseException):
        self.exc = exc


BranchObserver = Callable[[str, int], None]


class Branch:
    """
    One reader's view of the split stream.

    Attributes:
        name: "client" or "persist"
        bytes_delivered: Bytes handed to this reader so far
    """

    def __init__(self, name: str, on_detach: Callable[["Branch"], None], observer: Optional[BranchObserver] = None):
        self.name = name
        self.bytes_delivered = 0
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_detach = on_detach
        self._observer = observer
        self._detached = False
        self._finished = asyncio.Event()

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def _put(self, item: object) -> None:
        if not self._detached:
            self._queue.put_nowait(item)

    def _finish(self) -> None:
        if self._finished.is_set():
            return
        self._finished.set()
        if self._observer is not None:
            self._observer(self.name, self.bytes_delivered)

    def __aiter__(self) -> "Branch":
        return self

    async def __anext__(self) -> bytes:
        if self._detached or self._finished.is_set():
            raise StopAsyncIteration

        try:
            item = await self._queue.get()
        except asyncio.CancelledError:
            self.detach()
            raise

        if item is _EOF:
            self._finish()
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._finish()
            raise item.exc

        self.bytes_delivered += len(item)
        return item

    def detach(self) -> None:
        """Stop receiving chunks. Idempotent."""
        if self._detached:
            return
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()
        debug(_LOG, "branch_detached", branch=self.name, bytes=self.bytes_delivered)
        self._finish()
        self._on_detach(self)

    async def aclose(self) -> None:
        self.detach()

    async def wait_finished(self) -> None:
        await self._finished.wait()


class SplitStream:
    """The two branches of a split plus the pump feeding them."""

    def __init__(self, source: AsyncIterable[bytes], observer: Optional[BranchObserver] = None):
        self._source = source
        self.client = Branch(CLIENT, self._branch_detached, observer)
        self.persist = Branch(PERSIST, self._branch_detached, observer)
        self._branches: Tuple[Branch, Branch] = (self.client, self.persist)
        self._pump_task: Optional[asyncio.Task] = None

    @property
    def branches(self) -> Tuple[Branch, Branch]:
        return self._branches

    def start(self) -> "SplitStream":
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump())
        return self

    def _attached(self) -> list:
        return [b for b in self._branches if not b.detached]

    def _branch_detached(self, branch: Branch) -> None:
        if not self._attached() and self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()

    async def _pump(self) -> None:
        iterator = self._source.__aiter__()
        try:
            while True:
                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                for branch in self._branches:
                    branch._put(chunk)
            for branch in self._branches:
                branch._put(_EOF)
        except asyncio.CancelledError:
            for branch in self._branches:
                branch._put(_EOF)
            raise
        except Exception as e:
            debug(_LOG, "source_failed", error=type(e).__name__)
            for branch in self._branches:
                branch._put(_Failure(e))
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def drained(self) -> None:
        """Wait until both branches have finished."""
        await asyncio.gather(self.client.wait_finished(), self.persist.wait_finished())

    async def aclose(self) -> None:
        """Detach both branches and wait for the pump to stop."""
        for branch in self._branches:
            branch.detach()
        if self._pump_task is not None:
            await asyncio.wait({self._pump_task})


def split(source: AsyncIterable[bytes], observer: Optional[BranchObserver] = None) -> SplitStream:
    """
    Split ``source`` into a client branch and a persistence branch.

    Must be called from a running event loop; the pump starts immediately.

    Args:
        source: Async iterable of byte chunks
        observer: Called once per branch with (branch name, bytes delivered)
            when that branch finishes
    """
    return SplitStream(source, observer).start()
