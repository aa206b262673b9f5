"""
Unit tests for task schedulers and content fingerprints.

Tests cover:
- ManualTaskScheduler ordering, cancellation and settle()
- AsyncioTaskScheduler against a real event loop
- Known fingerprint values
"""

import asyncio

import pytest

from replica.docsync.schedule.clock import AsyncioTaskScheduler, ManualTaskScheduler
from replica.docsync.schedule.fingerprint import fingerprint, hash_string


class TestManualTaskScheduler:
    """Tests for ManualTaskScheduler."""

    def test_timers_fire_in_due_order(self):
        """advance() fires due timers in order and moves the clock to each."""
        clock = ManualTaskScheduler(start_ms=0)
        fired = []
        clock.call_later(2.0, lambda: fired.append(("b", clock.now_ms())))
        clock.call_later(1.0, lambda: fired.append(("a", clock.now_ms())))
        clock.call_later(5.0, lambda: fired.append(("c", clock.now_ms())))

        clock.advance(3.0)

        assert fired == [("a", 1000), ("b", 2000)]
        assert clock.now_ms() == 3000
        assert clock.pending_timers == 1

    def test_cancel(self):
        """A cancelled timer never fires."""
        clock = ManualTaskScheduler()
        fired = []
        handle = clock.call_later(1.0, lambda: fired.append(1))

        handle.cancel()
        clock.advance(2.0)

        assert fired == []
        assert clock.pending_timers == 0

    def test_cancel_ignored(self):
        """With honor_cancel=False a cancelled timer still fires."""
        clock = ManualTaskScheduler(honor_cancel=False)
        fired = []
        clock.call_later(1.0, lambda: fired.append(1)).cancel()

        clock.advance(1.0)

        assert fired == [1]

    def test_idle_runs_only_on_request(self):
        """Idle callbacks wait for run_idle()."""
        clock = ManualTaskScheduler()
        fired = []
        clock.call_idle(lambda: fired.append(1), 2.0)

        clock.advance(10.0)
        assert fired == []
        assert clock.pending_idle == 1

        assert clock.run_idle() == 1
        assert fired == [1]

    @pytest.mark.asyncio
    async def test_settle_chains_timer_idle_and_coroutine(self):
        """settle() drives a timer that queues idle work that awaits."""
        clock = ManualTaskScheduler()
        done = []

        async def work():
            done.append("work")

        clock.call_later(1.0, lambda: clock.call_idle(work, 2.0))

        await clock.settle(1.0)

        assert done == ["work"]


class TestAsyncioTaskScheduler:
    """Tests for AsyncioTaskScheduler."""

    @pytest.mark.asyncio
    async def test_call_later_runs_coroutine(self):
        """A coroutine callback runs after the delay and can be drained."""
        scheduler = AsyncioTaskScheduler()
        done = asyncio.Event()

        async def work():
            done.set()

        scheduler.call_later(0.01, work)
        await asyncio.wait_for(done.wait(), timeout=1.0)
        await scheduler.drain()

        assert done.is_set()

    @pytest.mark.asyncio
    async def test_cancel_before_fire(self):
        """A cancelled timer does not run."""
        scheduler = AsyncioTaskScheduler()
        fired = []

        handle = scheduler.call_later(0.01, lambda: fired.append(1))
        handle.cancel()
        await asyncio.sleep(0.05)

        assert fired == []

    @pytest.mark.asyncio
    async def test_call_idle_waits_for_quiet_period(self):
        """Idle callbacks are deferred past ready work, not run on the next iteration."""
        scheduler = AsyncioTaskScheduler(idle_delay_seconds=0.01)
        fired = []

        scheduler.call_idle(lambda: fired.append(1), 2.0)
        await asyncio.sleep(0)
        assert fired == []

        await asyncio.sleep(0.1)

        assert fired == [1]

    @pytest.mark.asyncio
    async def test_call_idle_capped_by_timeout(self):
        """The idle delay never exceeds the caller's timeout."""
        scheduler = AsyncioTaskScheduler(idle_delay_seconds=10.0)
        fired = []

        scheduler.call_idle(lambda: fired.append(1), 0.01)
        await asyncio.sleep(0.1)

        assert fired == [1]

    @pytest.mark.asyncio
    async def test_cancel_idle(self):
        """A cancelled idle callback does not run."""
        scheduler = AsyncioTaskScheduler(idle_delay_seconds=0.01)
        fired = []

        scheduler.call_idle(lambda: fired.append(1), 2.0).cancel()
        await asyncio.sleep(0.05)

        assert fired == []

    @pytest.mark.asyncio
    async def test_failing_callback_logged(self, caplog):
        """A callback that raises does not break the loop."""
        scheduler = AsyncioTaskScheduler(idle_delay_seconds=0.01)

        def boom():
            raise RuntimeError("boom")

        scheduler.call_idle(boom, 2.0)
        await asyncio.sleep(0.1)
        await scheduler.drain()

        assert "Scheduled callback failed" in caplog.text


class TestFingerprint:
    """Tests for hash_string and fingerprint."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("", "0"),
            ("a", "97"),
            ("hello", "99162322"),
            ("Hello World", "-862545276"),
            ("\U0001f600", "1772899"),
        ],
    )
    def test_known_values(self, value, expected):
        """Matches the 32-bit rolling hash over UTF-16 code units."""
        assert hash_string(value) == expected

    def test_fingerprint_uses_compact_json(self):
        """Key order and whitespace follow the compact serialization."""
        assert fingerprint({"a": 1, "b": [1, 2]}) == hash_string('{"a":1,"b":[1,2]}')

    def test_distinct_documents(self):
        """Different documents give different fingerprints."""
        assert fingerprint([{"id": "1"}]) != fingerprint([{"id": "2"}])
