"""
Tests for the stream splitter.

Tests cover:
- Both branches receive every chunk in order
- Independent pacing (a stalled branch does not hold up the other)
- Detaching one branch leaves the other intact
- Detaching both stops the pump and closes the source
- Source errors reach every branch after the delivered chunks
- drained() completes only when both branches have finished
- Observer receives per-branch byte counts
"""
from __future__ import annotations

import asyncio
from typing import List

import pytest

from tts_saas.audio import split


class FakeSource:
    """Async byte source that records whether it was closed."""

    def __init__(self, chunks: List[bytes], delay: float = 0.0, fail_at: int | None = None):
        self.chunks = chunks
        self.delay = delay
        self.fail_at = fail_at
        self.closed = False
        self.produced = 0

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_at is not None and i == self.fail_at:
                    raise RuntimeError("source broke")
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.produced += 1
                yield chunk
        finally:
            self.closed = True


async def _collect(branch) -> bytes:
    return b"".join([chunk async for chunk in branch])


CHUNKS = [b"aa", b"bbb", b"c", b"dddd"]


class TestFanOut:
    def test_both_branches_get_everything_in_order(self):
        async def scenario():
            s = split(FakeSource(CHUNKS))
            return await asyncio.gather(_collect(s.client), _collect(s.persist))

        client, persist = asyncio.run(scenario())
        assert client == persist == b"".join(CHUNKS)

    def test_branches_read_sequentially(self):
        """Reading one branch fully before the other still works (unbounded queues)."""
        async def scenario():
            s = split(FakeSource(CHUNKS))
            first = await _collect(s.persist)
            second = await _collect(s.client)
            await s.drained()
            return first, second

        first, second = asyncio.run(scenario())
        assert first == second == b"".join(CHUNKS)

    def test_stalled_branch_does_not_block_other(self):
        async def scenario():
            s = split(FakeSource(CHUNKS, delay=0.01))
            # Never read the client branch until persist is done
            persist = await asyncio.wait_for(_collect(s.persist), timeout=2)
            client = await _collect(s.client)
            return persist, client

        persist, client = asyncio.run(scenario())
        assert persist == client


class TestDetach:
    def test_detach_one_branch(self):
        async def scenario():
            source = FakeSource(CHUNKS, delay=0.01)
            s = split(source)
            first = await s.client.__anext__()
            await s.client.aclose()
            persist = await _collect(s.persist)
            await s.drained()
            return first, persist, s.client.bytes_delivered, source.closed

        first, persist, client_bytes, closed = asyncio.run(scenario())
        assert first == b"aa"
        assert persist == b"".join(CHUNKS)
        assert client_bytes == 2
        assert closed is True

    def test_detached_branch_stops_iterating(self):
        async def scenario():
            s = split(FakeSource(CHUNKS))
            s.client.detach()
            rest = await _collect(s.client)
            await _collect(s.persist)
            return rest

        assert asyncio.run(scenario()) == b""

    def test_detach_all_stops_pump_and_closes_source(self):
        async def scenario():
            source = FakeSource([b"x"] * 1000, delay=0.005)
            s = split(source)
            await s.client.__anext__()
            await s.aclose()
            return source

        source = asyncio.run(scenario())
        assert source.closed is True
        assert source.produced < 1000

    def test_cancelled_reader_detaches(self):
        async def scenario():
            s = split(FakeSource([b"x"] * 50, delay=0.01))

            async def reader():
                async for _ in s.client:
                    pass

            task = asyncio.create_task(reader())
            await asyncio.sleep(0.03)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            persist = await _collect(s.persist)
            return s.client.detached, persist

        detached, persist = asyncio.run(scenario())
        assert detached is True
        assert persist == b"x" * 50


class TestErrors:
    def test_source_error_reaches_both_after_delivered_chunks(self):
        async def scenario():
            s = split(FakeSource(CHUNKS, fail_at=2))
            results = []
            for branch in s.branches:
                got = []
                with pytest.raises(RuntimeError, match="source broke"):
                    async for chunk in branch:
                        got.append(chunk)
                results.append(got)
            await s.drained()
            return results

        client, persist = asyncio.run(scenario())
        assert client == persist == [b"aa", b"bbb"]


class TestDrained:
    def test_drained_waits_for_both(self):
        async def scenario():
            s = split(FakeSource(CHUNKS))
            await _collect(s.client)
            waiter = asyncio.create_task(s.drained())
            await asyncio.sleep(0.01)
            pending = not waiter.done()
            await _collect(s.persist)
            await asyncio.wait_for(waiter, timeout=1)
            return pending

        assert asyncio.run(scenario()) is True

    def test_observer_gets_byte_counts(self):
        seen = {}

        async def scenario():
            s = split(FakeSource(CHUNKS), observer=lambda name, n: seen.__setitem__(name, n))
            await _collect(s.persist)
            first = await s.client.__anext__()
            await s.client.aclose()
            await s.drained()
            return first

        asyncio.run(scenario())
        assert seen == {"persist": 10, "client": 2}
