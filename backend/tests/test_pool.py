"""Tests for the credential-lane worker pool."""

import asyncio

import pytest

from app.engines.jobs.pool import WorkerPool


class StubToken:
    """Cancellation token that trips after a number of checks."""

    def __init__(self, cancel_after=None):
        self.cancel_after = cancel_after
        self.checks = 0
        self.cancelled = False

    async def check(self):
        self.checks += 1
        if self.cancel_after is not None and self.checks > self.cancel_after:
            self.cancelled = True
        return self.cancelled


class TestLaneLayout:
    def test_no_credentials_gives_one_sequential_lane(self):
        pool = WorkerPool([], StubToken())

        assert pool.size == 1
        assert pool.parallel is False
        assert pool.lanes[0].worker_id == 0
        assert pool.lanes[0].credential is None
        assert pool.lanes[0].label == "W0"

    def test_single_credential_is_bound_to_lane_zero(self):
        pool = WorkerPool(["sk-1"], StubToken(), label_prefix="S")

        assert pool.size == 1
        assert pool.lanes[0].credential == "sk-1"
        assert pool.lanes[0].label == "S0"

    def test_one_lane_per_credential(self):
        pool = WorkerPool(["a", "b", "c"], StubToken())

        assert pool.parallel is True
        assert [lane.worker_id for lane in pool.lanes] == [1, 2, 3]
        assert [lane.credential for lane in pool.lanes] == ["a", "b", "c"]
        assert [lane.label for lane in pool.lanes] == ["W1", "W2", "W3"]


class TestRun:
    @pytest.mark.asyncio
    async def test_every_item_is_processed_exactly_once(self):
        pool = WorkerPool(["a", "b", "c", "d"], StubToken())
        seen = []

        async def handler(item, lane):
            await asyncio.sleep(0)
            seen.append((item, lane.credential))

        stats = await pool.run(list(range(10)), handler)

        assert sorted(item for item, _ in seen) == list(range(10))
        assert {credential for _, credential in seen} <= {"a", "b", "c", "d"}
        assert stats.claimed == 10
        assert stats.unclaimed == 0
        assert stats.cancelled is False

    @pytest.mark.asyncio
    async def test_sequential_lane_keeps_submission_order(self):
        pool = WorkerPool([], StubToken())
        seen = []

        async def handler(item, lane):
            seen.append(item)

        await pool.run(["x", "y", "z"], handler)

        assert seen == ["x", "y", "z"]

    @pytest.mark.asyncio
    async def test_cancellation_stops_claims(self):
        """Lanes stop claiming once the token trips; the rest stay unclaimed."""
        token = StubToken(cancel_after=2)
        pool = WorkerPool([], token)
        seen = []

        async def handler(item, lane):
            seen.append(item)

        stats = await pool.run(list(range(5)), handler)

        assert seen == [0, 1]
        assert stats.claimed == 2
        assert stats.unclaimed == 3
        assert stats.cancelled is True

    @pytest.mark.asyncio
    async def test_handler_error_is_reraised_and_stops_other_lanes(self):
        pool = WorkerPool(["a", "b"], StubToken())
        seen = []

        async def handler(item, lane):
            await asyncio.sleep(0)
            if item == 1:
                raise RuntimeError("store unavailable")
            seen.append(item)

        with pytest.raises(RuntimeError, match="store unavailable"):
            await pool.run(list(range(20)), handler)

        assert len(seen) < 19

    @pytest.mark.asyncio
    async def test_empty_items(self):
        pool = WorkerPool(["a", "b"], StubToken())

        async def handler(item, lane):
            raise AssertionError("no items to handle")

        stats = await pool.run([], handler)

        assert stats.claimed == 0
        assert stats.lanes == 2
