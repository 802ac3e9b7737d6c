"""Tests for the bounded asyncio worker pool."""

from __future__ import annotations

import asyncio

import pytest

from policyaudit.utils.concurrency import map_bounded


class TestMapBounded:
    """Test map_bounded."""

    def test_results_follow_input_order(self) -> None:
        """A slow first item still lands in slot zero."""
        finished: list[str] = []

        async def work(item: tuple[str, float], _idx: int) -> str:
            name, delay = item
            await asyncio.sleep(delay)
            finished.append(name)
            return name.upper()

        items = [("slow", 0.05), ("fast", 0.0)]
        results = asyncio.run(map_bounded(items, 2, work))

        assert finished == ["fast", "slow"]
        assert results == ["SLOW", "FAST"]

    def test_each_item_processed_once(self) -> None:
        seen: list[int] = []

        async def work(item: int, idx: int) -> int:
            seen.append(idx)
            await asyncio.sleep(0)
            return item * 2

        results = asyncio.run(map_bounded(list(range(25)), 4, work))

        assert results == [i * 2 for i in range(25)]
        assert sorted(seen) == list(range(25))

    def test_limit_bounds_in_flight(self) -> None:
        in_flight = 0
        peak = 0

        async def work(item: int, _idx: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1
            return item

        asyncio.run(map_bounded(list(range(20)), 3, work))
        assert peak == 3

    def test_limit_one_is_sequential(self) -> None:
        order: list[int] = []

        async def work(item: int, _idx: int) -> int:
            order.append(item)
            await asyncio.sleep(0.001 * (5 - item))
            return item

        asyncio.run(map_bounded(list(range(5)), 1, work))
        assert order == [0, 1, 2, 3, 4]

    def test_empty(self) -> None:
        async def work(item: int, _idx: int) -> int:
            return item

        assert asyncio.run(map_bounded([], 4, work)) == []

    def test_invalid_limit(self) -> None:
        async def work(item: int, _idx: int) -> int:
            return item

        with pytest.raises(ValueError):
            asyncio.run(map_bounded([1], 0, work))

    def test_exception_propagates(self) -> None:
        async def work(item: int, _idx: int) -> int:
            if item == 2:
                raise RuntimeError("boom")
            await asyncio.sleep(0.001)
            return item

        with pytest.raises(RuntimeError, match="boom"):
            asyncio.run(map_bounded(list(range(6)), 2, work))
