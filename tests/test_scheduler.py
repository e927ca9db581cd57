"""
Batch Scheduler Tests

Tests the fragment pipeline end to end with mocked providers:
  1. Handle dedupe and idempotency
  2. Input rejection and the enabled toggle
  3. Cache hits, fast reject, local-only mode
  4. Fault isolation within a batch
  5. Bounded batch concurrency and inter-batch delay
  6. Listener delivery, handle bounds, shutdown
"""

from __future__ import annotations

import asyncio
import json
import time

import pytest

from feelingwise.cache import ResultCache
from feelingwise.detector import TechniqueDetector
from feelingwise.errors import InputRejected
from feelingwise.llm import LLMProvider
from feelingwise.neutralizer import NeutralizationClient
from feelingwise.scheduler import (
    BatchScheduler,
    Fragment,
    FragmentResult,
    ProcessingState,
    validate_fragment,
)

SCENARIO_A = "This could be concerning"
SCENARIO_B = "WAKE UP!!! They want to DESTROY everything!!!"
SCENARIO_C_FALLBACK = "Wake up. They want to Destroy everything."


# ============================================================
# MOCKS
# ============================================================

class MockLLM(LLMProvider):
    """Answers every prompt with the same neutralization, optionally slowly."""

    def __init__(self, techniques=("Fear Appeal", "False Urgency"), delay: float = 0.0):
        self.techniques = list(techniques)
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def generate(self, prompt, system_instruction=None, temperature=0.7, json_mode=False):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return json.dumps({
                "neutralized": "Wake up. They want to destroy everything.",
                "techniques": self.techniques,
                "severity": 2,
            })
        finally:
            self.active -= 1


class ExplodingDetector(TechniqueDetector):
    """Raises for fragments containing 'explode'."""

    def detect(self, text):
        if "explode" in text:
            raise RuntimeError("boom")
        return super().detect(text)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_scheduler(llm=None, timeout: float = 5.0, **kwargs) -> BatchScheduler:
    kwargs.setdefault("batch_delay", 0)
    return BatchScheduler(
        cache=ResultCache(ttl_seconds=3600, max_entries=100),
        client=NeutralizationClient(llm, timeout=timeout),
        **kwargs,
    )


# ============================================================
# VALIDATION
# ============================================================

class TestValidation:

    @pytest.mark.parametrize("text", ["short", "x" * 5001, " " * 20, 12345, None])
    def test_rejected_shapes(self, text):
        with pytest.raises(InputRejected):
            validate_fragment(text)

    def test_bounds_inclusive(self):
        assert validate_fragment("x" * 10) == "x" * 10
        assert validate_fragment("x" * 5000) == "x" * 5000

    @pytest.mark.asyncio
    async def test_submit_rejects_synchronously(self):
        scheduler = make_scheduler(MockLLM())
        with pytest.raises(InputRejected):
            await scheduler.submit(Fragment(text="tiny", handle="h1"))
        assert scheduler.state_of("h1") is None
        assert scheduler.stats["rejected"] == 1

    @pytest.mark.asyncio
    async def test_unhashable_handle_rejected(self):
        scheduler = make_scheduler(MockLLM())
        with pytest.raises(InputRejected):
            await scheduler.submit(Fragment(text=SCENARIO_B, handle=["not", "hashable"]))


# ============================================================
# PIPELINE OUTCOMES
# ============================================================

class TestPipeline:

    @pytest.mark.asyncio
    async def test_scenario_b_service_result(self):
        llm = MockLLM()
        scheduler = make_scheduler(llm)
        result = await scheduler.process(Fragment(text=SCENARIO_B, handle="post-1"))
        assert result.ok
        assert result.source == "service"
        assert result.from_cache is False
        assert result.techniques == ["FearAppeal", "FalseUrgency"]
        assert result.severity == 8
        assert result.diff_spans
        assert scheduler.state_of("post-1") is ProcessingState.DONE

    @pytest.mark.asyncio
    async def test_identical_text_hits_cache(self):
        llm = MockLLM()
        scheduler = make_scheduler(llm)
        await scheduler.process(Fragment(text=SCENARIO_B, handle="post-1"))
        again = await scheduler.process(Fragment(text=SCENARIO_B, handle="post-2"))
        assert again.from_cache is True
        assert again.source == "cache"
        assert again.severity == 8
        assert llm.calls == 1
        assert scheduler.stats["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_scenario_a_fast_reject(self):
        llm = MockLLM()
        scheduler = make_scheduler(llm)
        result = await scheduler.process(Fragment(text=SCENARIO_A, handle="calm"))
        assert result.source == "clean"
        assert result.severity == 0
        assert result.techniques == []
        assert result.neutralized == SCENARIO_A
        assert llm.calls == 0

    @pytest.mark.asyncio
    async def test_scenario_c_timeout_fallback(self):
        scheduler = make_scheduler(MockLLM(delay=10), timeout=0.05)
        result = await scheduler.process(Fragment(text=SCENARIO_B, handle="slow"))
        assert result.ok
        assert result.source == "fallback"
        assert result.neutralized == SCENARIO_C_FALLBACK
        assert result.from_cache is False
        assert scheduler.cache.stats["entries"] == 1

    @pytest.mark.asyncio
    async def test_fallback_repeat_served_from_cache(self):
        llm = MockLLM(delay=10)
        scheduler = make_scheduler(llm, timeout=0.05)
        first = await scheduler.process(Fragment(text=SCENARIO_B, handle="a"))
        second = await scheduler.process(Fragment(text=SCENARIO_B, handle="b"))
        assert first.source == "fallback"
        assert second.source == "cache"
        assert second.neutralized == SCENARIO_C_FALLBACK
        assert llm.calls == 1

    @pytest.mark.asyncio
    async def test_fallback_entry_expires_before_service_entries(self):
        clock = FakeClock()
        llm = MockLLM(delay=10)
        scheduler = BatchScheduler(
            cache=ResultCache(ttl_seconds=3600, clock=clock),
            client=NeutralizationClient(llm, timeout=0.05),
            batch_delay=0,
            fallback_ttl=60,
        )
        await scheduler.process(Fragment(text=SCENARIO_B, handle="a"))
        clock.now += 61
        llm.delay = 0
        retried = await scheduler.process(Fragment(text=SCENARIO_B, handle="b"))
        assert retried.source == "service"
        assert llm.calls == 2

    @pytest.mark.asyncio
    async def test_auto_neutralize_off_is_local_only(self):
        llm = MockLLM()
        scheduler = make_scheduler(llm, auto_neutralize=False)
        result = await scheduler.process(Fragment(text=SCENARIO_B, handle="local"))
        assert result.source == "local"
        assert result.neutralized == SCENARIO_B
        assert "FearAppeal" in result.techniques
        assert result.severity > 0
        assert llm.calls == 0
        assert scheduler.cache.stats["entries"] == 0


# ============================================================
# DEDUPE / STATE
# ============================================================

class TestDedupe:

    @pytest.mark.asyncio
    async def test_pending_state_on_submit(self):
        scheduler = make_scheduler(MockLLM())
        future = await scheduler.submit(Fragment(text=SCENARIO_B, handle="h"))
        assert scheduler.state_of("h") is ProcessingState.PENDING
        await future

    @pytest.mark.asyncio
    async def test_same_handle_in_flight_once(self):
        results = []
        scheduler = make_scheduler(MockLLM(delay=0.02), on_result=results.append)
        first = await scheduler.submit(Fragment(text=SCENARIO_B, handle="dup"))
        second = await scheduler.submit(Fragment(text=SCENARIO_B, handle="dup"))
        await asyncio.sleep(0.005)
        third = await scheduler.submit(Fragment(text=SCENARIO_B, handle="dup"))
        assert first is not None
        assert second is None and third is None
        await scheduler.join()
        assert len(results) == 1
        assert scheduler.stats["duplicates"] == 2

    @pytest.mark.asyncio
    async def test_done_handle_dropped(self):
        scheduler = make_scheduler(MockLLM())
        await scheduler.process(Fragment(text=SCENARIO_B, handle="h"))
        assert await scheduler.process(Fragment(text=SCENARIO_B, handle="h")) is None

    @pytest.mark.asyncio
    async def test_disabled_is_noop(self):
        scheduler = make_scheduler(MockLLM(), enabled=False)
        assert await scheduler.submit(Fragment(text=SCENARIO_B, handle="h")) is None
        assert scheduler.state_of("h") is None
        assert scheduler.stats["submitted"] == 0

    @pytest.mark.asyncio
    async def test_update_settings(self):
        scheduler = make_scheduler(MockLLM())
        assert scheduler.update_settings(enabled=False) == {
            "enabled": False, "auto_neutralize": True,
        }
        assert await scheduler.submit(Fragment(text=SCENARIO_B, handle="h")) is None
        scheduler.update_settings(enabled=True)
        assert await scheduler.submit(Fragment(text=SCENARIO_B, handle="h")) is not None
        await scheduler.join()

    @pytest.mark.asyncio
    async def test_tracked_handles_bounded(self):
        scheduler = make_scheduler(MockLLM(), max_tracked_handles=2)
        for i in range(3):
            await scheduler.process(Fragment(text=f"{SCENARIO_A} {i}", handle=f"h{i}"))
        assert scheduler.stats["tracked_handles"] == 2
        assert scheduler.state_of("h0") is None
        assert scheduler.state_of("h2") is ProcessingState.DONE
        assert await scheduler.submit(Fragment(text=f"{SCENARIO_A} 0", handle="h0")) is not None
        await scheduler.join()


# ============================================================
# FAULT ISOLATION
# ============================================================

class TestFaultIsolation:

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_siblings(self):
        scheduler = make_scheduler(MockLLM(), detector=ExplodingDetector())
        futures = [
            await scheduler.submit(Fragment(text="URGENT alert number one!!", handle="a")),
            await scheduler.submit(Fragment(text="please explode NOW!!", handle="b")),
            await scheduler.submit(Fragment(text="URGENT alert number two!!", handle="c")),
        ]
        a, b, c = await asyncio.gather(*futures)
        assert a.ok and c.ok
        assert b.ok is False
        assert b.source == "error"
        assert "boom" in b.error
        assert b.neutralized == "please explode NOW!!"
        assert scheduler.stats["failed"] == 1
        assert scheduler.stats["completed"] == 2

    @pytest.mark.asyncio
    async def test_failed_handle_is_retryable(self):
        scheduler = make_scheduler(MockLLM(), detector=ExplodingDetector())
        await scheduler.process(Fragment(text="please explode NOW!!", handle="b"))
        assert scheduler.state_of("b") is None
        retry = await scheduler.submit(Fragment(text="please explode NOW!!", handle="b"))
        assert retry is not None
        assert (await retry).ok is False

    @pytest.mark.asyncio
    async def test_listener_errors_are_contained(self):
        def broken_listener(result):
            raise RuntimeError("listener broke")

        scheduler = make_scheduler(MockLLM(), on_result=broken_listener)
        result = await scheduler.process(Fragment(text=SCENARIO_B, handle="h"))
        assert result.ok
        assert scheduler.state_of("h") is ProcessingState.DONE

    @pytest.mark.asyncio
    async def test_async_listener(self):
        seen = []

        async def listener(result: FragmentResult):
            seen.append(result.handle)

        scheduler = make_scheduler(MockLLM(), on_result=listener)
        await scheduler.process(Fragment(text=SCENARIO_B, handle="h"))
        assert seen == ["h"]


# ============================================================
# BATCHING
# ============================================================

class TestBatching:

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_batch_size(self):
        llm = MockLLM(delay=0.01)
        scheduler = make_scheduler(llm, batch_size=3)
        futures = []
        for i in range(7):
            futures.append(await scheduler.submit(
                Fragment(text=f"URGENT update number {i}!!", handle=f"h{i}")
            ))
        results = await asyncio.gather(*futures)
        assert all(r.ok for r in results)
        assert llm.calls == 7
        assert llm.max_active <= 3
        assert scheduler.stats["batches"] >= 3

    @pytest.mark.asyncio
    async def test_same_text_in_one_batch_calls_service_once(self):
        llm = MockLLM(delay=0.02)
        scheduler = make_scheduler(llm, batch_size=3)
        futures = [
            await scheduler.submit(Fragment(text=SCENARIO_B, handle=h))
            for h in ("a", "b")
        ]
        a, b = await asyncio.gather(*futures)
        assert llm.calls == 1
        assert a.ok and b.ok
        assert a.neutralized == b.neutralized
        assert {a.handle, b.handle} == {"a", "b"}
        assert scheduler.stats["coalesced"] == 1
        assert scheduler.cache.stats["entries"] == 1

    @pytest.mark.asyncio
    async def test_delay_between_batches(self):
        scheduler = make_scheduler(MockLLM(), batch_size=1, batch_delay=0.05)
        start = time.monotonic()
        futures = [
            await scheduler.submit(Fragment(text=f"{SCENARIO_A} {i}", handle=i))
            for i in range(3)
        ]
        await asyncio.gather(*futures)
        assert time.monotonic() - start >= 0.09

    @pytest.mark.asyncio
    async def test_join_waits_until_idle(self):
        scheduler = make_scheduler(MockLLM(delay=0.01))
        for i in range(4):
            await scheduler.submit(Fragment(text=f"URGENT update number {i}!!", handle=i))
        await scheduler.join()
        assert scheduler.stats["idle"] is True
        assert scheduler.queue_depth == 0
        assert scheduler.stats["completed"] == 4


# ============================================================
# SHUTDOWN
# ============================================================

class TestShutdown:

    @pytest.mark.asyncio
    async def test_aclose_fails_unfinished_fragments(self):
        scheduler = make_scheduler(MockLLM(delay=10), timeout=30, batch_size=1)
        running = await scheduler.submit(Fragment(text=SCENARIO_B, handle="a"))
        queued = await scheduler.submit(Fragment(text="URGENT update number 1!!", handle="b"))
        await asyncio.sleep(0.01)
        await scheduler.aclose()
        for future in (running, queued):
            result = await future
            assert result.ok is False
            assert result.error == "scheduler closed"
        assert await scheduler.submit(Fragment(text=SCENARIO_B, handle="c")) is None
