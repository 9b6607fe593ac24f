# tests/unit/pipeline/test_unit_dedup.py — v1
"""Tests for pipeline/dedup.py — collapsing concurrent executions."""

from __future__ import annotations

import asyncio

import pytest

from reportflow.pipeline.dedup import Deduplicator


class TestDeduplicator:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_execution(self):
        dedup = Deduplicator()
        calls = 0
        gate = asyncio.Event()

        async def work() -> dict[str, int]:
            nonlocal calls
            calls += 1
            await gate.wait()
            return {"value": 42}

        first = asyncio.create_task(dedup.run_exclusive(("doc", "generate"), work))
        second = asyncio.create_task(dedup.run_exclusive(("doc", "generate"), work))
        await asyncio.sleep(0)
        assert dedup.is_running(("doc", "generate"))
        gate.set()
        a, b = await asyncio.gather(first, second)

        assert calls == 1
        assert a is b
        assert dedup.active_count == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        dedup = Deduplicator()
        calls: list[str] = []

        def work(name: str):
            async def run() -> str:
                calls.append(name)
                await asyncio.sleep(0)
                return name

            return run

        results = await asyncio.gather(
            dedup.run_exclusive(("doc", "review_a"), work("a")),
            dedup.run_exclusive(("doc", "review_b"), work("b")),
        )
        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_exception_reaches_every_caller(self):
        dedup = Deduplicator()
        gate = asyncio.Event()

        async def boom() -> None:
            await gate.wait()
            raise RuntimeError("AI down")

        callers = [asyncio.create_task(dedup.run_exclusive("k", boom)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*callers, return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        assert not dedup.is_running("k")

    @pytest.mark.asyncio
    async def test_sequential_calls_execute_again(self):
        dedup = Deduplicator()
        calls = 0

        async def work() -> int:
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.run_exclusive("k", work) == 1
        assert await dedup.run_exclusive("k", work) == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_work(self):
        dedup = Deduplicator()
        gate = asyncio.Event()

        async def work() -> str:
            await gate.wait()
            return "done"

        first = asyncio.create_task(dedup.run_exclusive("k", work))
        second = asyncio.create_task(dedup.run_exclusive("k", work))
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)
        gate.set()
        assert await second == "done"
        assert first.cancelled()

    @pytest.mark.asyncio
    async def test_timeout_releases_key(self):
        dedup = Deduplicator()
        gate = asyncio.Event()
        calls = 0

        async def work() -> int:
            nonlocal calls
            calls += 1
            await gate.wait()
            return calls

        first = asyncio.create_task(dedup.run_exclusive("k", work, timeout_s=0.01))
        await asyncio.sleep(0.05)
        assert not dedup.is_running("k")

        second = asyncio.create_task(dedup.run_exclusive("k", work, timeout_s=1))
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(first, second)
        assert calls == 2
        assert dedup.active_count == 0

    @pytest.mark.asyncio
    async def test_clear(self):
        dedup = Deduplicator()
        gate = asyncio.Event()

        async def work() -> None:
            await gate.wait()

        task = asyncio.create_task(dedup.run_exclusive("k", work))
        await asyncio.sleep(0)
        assert dedup.active_keys() == ["k"]
        dedup.clear()
        assert dedup.active_count == 0
        gate.set()
        await task
