"""
Batch Scheduler — Fragment Pipeline Orchestrator

Accepts fragments as they stream in, drops duplicates by handle, and
drains a FIFO queue in small batches so bursts never fan out into
unbounded concurrent service calls.

Per fragment:
  cache hit            → cached result (from_cache=True)
  detector finds none  → "clean" result, no service call
  auto-neutralize off  → local-only result (detector techniques + local severity)
  otherwise            → neutralization client → cache → result

Fragments with identical text share one in-progress service call.
Fallback outcomes are cached for a short fallback_ttl so a recovered
service gets another chance at the text soon after.

Handle lifecycle: PENDING → IN_FLIGHT → DONE | FAILED.
DONE handles are remembered so duplicates are dropped; FAILED handles
are forgotten so a resubmission retries. Every accepted submission gets
exactly one terminal FragmentResult, failures included.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Hashable, Optional

from feelingwise.cache import CacheRecord, ResultCache
from feelingwise.detector import TechniqueDetector, technique_detector
from feelingwise.errors import InputRejected, ProcessingFailed
from feelingwise.fingerprint import fingerprint
from feelingwise.neutralizer import Neutralization, NeutralizationClient, compute_diff_spans
from feelingwise.scorer import score

logger = logging.getLogger(__name__)

MIN_FRAGMENT_CHARS = 10
MAX_FRAGMENT_CHARS = 5000
DEFAULT_FALLBACK_TTL_SECONDS = 300


# ============================================================
# DATA STRUCTURES
# ============================================================

class ProcessingState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Fragment:
    """A unit of text to classify, identified by an opaque handle."""
    text: str
    handle: Hashable


@dataclass
class FragmentResult:
    """Terminal notification for one fragment."""
    handle: Any
    original: str
    neutralized: str
    techniques: list[str] = field(default_factory=list)
    severity: int = 0
    from_cache: bool = False
    source: str = "service"   # cache | clean | local | service | fallback | error
    ok: bool = True
    error: Optional[str] = None
    diff_spans: list[dict] = field(default_factory=list)

    @classmethod
    def clean(cls, handle: Any, text: str) -> "FragmentResult":
        return cls(handle=handle, original=text, neutralized=text, source="clean")

    @classmethod
    def failure(cls, handle: Any, text: str, error: str) -> "FragmentResult":
        return cls(
            handle=handle, original=text, neutralized=text,
            source="error", ok=False, error=error,
        )

    @classmethod
    def from_record(cls, handle: Any, record: CacheRecord) -> "FragmentResult":
        return cls(
            handle=handle,
            original=record.original,
            neutralized=record.neutralized,
            techniques=record.technique_names,
            severity=record.severity,
            from_cache=True,
            source="cache",
            diff_spans=compute_diff_spans(record.original, record.neutralized),
        )

    def to_dict(self) -> dict:
        return {
            "handle": self.handle,
            "original": self.original,
            "neutralized": self.neutralized,
            "techniques": list(self.techniques),
            "severity": self.severity,
            "from_cache": self.from_cache,
            "source": self.source,
            "ok": self.ok,
            "error": self.error,
            "diff_spans": list(self.diff_spans),
        }


def validate_fragment(
    text: Any,
    min_chars: int = MIN_FRAGMENT_CHARS,
    max_chars: int = MAX_FRAGMENT_CHARS,
) -> str:
    """Raise InputRejected unless ``text`` is an acceptable fragment."""
    if not isinstance(text, str):
        raise InputRejected(f"fragment text must be a string, got {type(text).__name__}")
    if not text.strip():
        raise InputRejected("fragment text is empty")
    if len(text) < min_chars:
        raise InputRejected(f"fragment shorter than {min_chars} characters")
    if len(text) > max_chars:
        raise InputRejected(f"fragment longer than {max_chars} characters")
    return text


ResultListener = Callable[[FragmentResult], Any]


# ============================================================
# SCHEDULER
# ============================================================

class BatchScheduler:
    """Deduplicating, batch-draining fragment pipeline."""

    def __init__(
        self,
        cache: ResultCache,
        client: NeutralizationClient,
        detector: Optional[TechniqueDetector] = None,
        batch_size: int = 3,
        batch_delay: float = 0.5,
        max_tracked_handles: int = 10000,
        enabled: bool = True,
        auto_neutralize: bool = True,
        on_result: Optional[ResultListener] = None,
        min_chars: int = MIN_FRAGMENT_CHARS,
        max_chars: int = MAX_FRAGMENT_CHARS,
        fallback_ttl: float = DEFAULT_FALLBACK_TTL_SECONDS,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.cache = cache
        self.client = client
        self.detector = detector or technique_detector
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_tracked_handles = max_tracked_handles
        self.enabled = enabled
        self.auto_neutralize = auto_neutralize
        self.on_result = on_result
        self.min_chars = min_chars
        self.max_chars = max_chars
        self.fallback_ttl = fallback_ttl

        self._queue: deque[tuple[Fragment, asyncio.Future]] = deque()
        self._in_flight: dict[Hashable, tuple[Fragment, asyncio.Future]] = {}
        self._states: OrderedDict[Hashable, ProcessingState] = OrderedDict()
        self._lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_task: Optional[asyncio.Task] = None
        self._neutralizing: dict[str, asyncio.Future] = {}
        self._closed = False

        self._counters = {
            "submitted": 0,
            "duplicates": 0,
            "rejected": 0,
            "completed": 0,
            "failed": 0,
            "cache_hits": 0,
            "clean": 0,
            "batches": 0,
            "coalesced": 0,
        }

    # --------------------------------------------------------
    # Settings
    # --------------------------------------------------------

    def update_settings(
        self,
        enabled: Optional[bool] = None,
        auto_neutralize: Optional[bool] = None,
    ) -> dict:
        """Apply host toggles. Takes effect for the next submission."""
        if enabled is not None:
            self.enabled = enabled
        if auto_neutralize is not None:
            self.auto_neutralize = auto_neutralize
        logger.info("Settings updated: enabled=%s auto_neutralize=%s",
                    self.enabled, self.auto_neutralize)
        return self.settings

    @property
    def settings(self) -> dict:
        return {"enabled": self.enabled, "auto_neutralize": self.auto_neutralize}

    # --------------------------------------------------------
    # Submission
    # --------------------------------------------------------

    async def submit(self, fragment: Fragment) -> Optional[asyncio.Future]:
        """
        Queue a fragment.

        Returns a future resolving to its FragmentResult, or None when the
        scheduler is disabled or the handle is already tracked.
        Raises InputRejected for malformed fragments.
        """
        if not self.enabled or self._closed:
            return None

        try:
            validate_fragment(fragment.text, self.min_chars, self.max_chars)
            hash(fragment.handle)
        except InputRejected:
            self._counters["rejected"] += 1
            raise
        except TypeError as e:
            self._counters["rejected"] += 1
            raise InputRejected(f"fragment handle is not hashable: {e}") from e

        async with self._lock:
            if fragment.handle in self._states:
                self._counters["duplicates"] += 1
                return None

            self._states[fragment.handle] = ProcessingState.PENDING
            future = asyncio.get_running_loop().create_future()
            self._queue.append((fragment, future))
            self._counters["submitted"] += 1
            self._idle.clear()
            self._ensure_draining()

        return future

    async def process(self, fragment: Fragment) -> Optional[FragmentResult]:
        """Submit and wait for the result. None when nothing was queued."""
        future = await self.submit(fragment)
        if future is None:
            return None
        return await future

    def _ensure_draining(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())

    # --------------------------------------------------------
    # Drain loop
    # --------------------------------------------------------

    async def _drain(self) -> None:
        while True:
            async with self._lock:
                if not self._queue:
                    self._drain_task = None
                    self._idle.set()
                    return
                count = min(self.batch_size, len(self._queue))
                batch = [self._queue.popleft() for _ in range(count)]
                for fragment, future in batch:
                    self._states[fragment.handle] = ProcessingState.IN_FLIGHT
                    self._in_flight[fragment.handle] = (fragment, future)
                queue_depth = len(self._queue)

            self._counters["batches"] += 1
            logger.debug(
                "Draining batch of %d", len(batch),
                extra={"batch_size": len(batch), "queue_depth": queue_depth},
            )

            await asyncio.gather(
                *(self._process(fragment, future) for fragment, future in batch)
            )

            if self._queue and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

    async def _process(self, fragment: Fragment, future: asyncio.Future) -> None:
        start = time.monotonic()
        handle = fragment.handle
        try:
            result = await self._run_pipeline(fragment)
        except Exception as e:
            failure = ProcessingFailed(f"{type(e).__name__}: {e}", handle=handle)
            logger.error(
                "Fragment processing failed",
                extra={"handle": str(handle), "error": str(failure),
                       "error_type": type(e).__name__},
                exc_info=True,
            )
            async with self._lock:
                # FAILED is transient: forgetting the handle makes it retryable
                self._states.pop(handle, None)
                self._in_flight.pop(handle, None)
            self._counters["failed"] += 1
            result = FragmentResult.failure(handle, fragment.text, str(failure))
        else:
            async with self._lock:
                self._in_flight.pop(handle, None)
                self._states[handle] = ProcessingState.DONE
                self._states.move_to_end(handle)
                self._forget_done()
            self._counters["completed"] += 1
            logger.info(
                "Fragment processed",
                extra={
                    "handle": str(handle),
                    "severity": result.severity,
                    "techniques_count": len(result.techniques),
                    "from_cache": result.from_cache,
                    "source": result.source,
                    "duration_ms": round((time.monotonic() - start) * 1000, 1),
                },
            )

        if not future.done():
            future.set_result(result)
        await self._notify(result)

    async def _run_pipeline(self, fragment: Fragment) -> FragmentResult:
        text = fragment.text
        fp = fingerprint(text)

        cached = await self.cache.get(fp)
        if cached is not None:
            self._counters["cache_hits"] += 1
            return FragmentResult.from_record(fragment.handle, cached)

        techniques = self.detector.detect(text)
        if not techniques:
            self._counters["clean"] += 1
            return FragmentResult.clean(fragment.handle, text)

        if not self.auto_neutralize:
            local = score(text, techniques)
            return FragmentResult(
                handle=fragment.handle,
                original=text,
                neutralized=text,
                techniques=[t.name for t in techniques],
                severity=local.severity,
                source="local",
            )

        outcome = await self._neutralize_once(fp, text)

        return FragmentResult(
            handle=fragment.handle,
            original=text,
            neutralized=outcome.neutralized,
            techniques=outcome.technique_names,
            severity=outcome.severity,
            source=outcome.source,
            diff_spans=compute_diff_spans(text, outcome.neutralized),
        )

    async def _neutralize_once(self, fp: str, text: str) -> Neutralization:
        """
        Neutralize ``text`` and cache the outcome, sharing the call with any
        other fragment of the same fingerprint that is already waiting on it.

        Fallback outcomes are cached too, for ``fallback_ttl`` seconds, so a
        down service is not re-asked for the same text on every repeat.
        """
        task = self._neutralizing.get(fp)
        if task is None:
            task = asyncio.ensure_future(self._neutralize_and_cache(fp, text))
            self._neutralizing[fp] = task
            task.add_done_callback(lambda _: self._neutralizing.pop(fp, None))
        else:
            self._counters["coalesced"] += 1
        return await asyncio.shield(task)

    async def _neutralize_and_cache(self, fp: str, text: str) -> Neutralization:
        outcome = await self.client.neutralize(text)
        record = CacheRecord(
            fingerprint=fp,
            original=text,
            neutralized=outcome.neutralized,
            techniques=tuple(outcome.techniques),
            severity=outcome.severity,
        )
        if outcome.source == "service":
            await self.cache.put(record)
        else:
            await self.cache.put(record, ttl_seconds=self.fallback_ttl)
        return outcome

    def _forget_done(self) -> None:
        """Drop the oldest DONE handles beyond max_tracked_handles. Caller holds the lock."""
        excess = len(self._states) - self.max_tracked_handles
        if excess <= 0:
            return
        stale = []
        for handle, state in self._states.items():
            if state is ProcessingState.DONE:
                stale.append(handle)
                if len(stale) >= excess:
                    break
        for handle in stale:
            del self._states[handle]

    async def _notify(self, result: FragmentResult) -> None:
        if self.on_result is None:
            return
        try:
            outcome = self.on_result(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Result listener failed: %s", e,
                           extra={"handle": str(result.handle),
                                  "error_type": type(e).__name__})

    # --------------------------------------------------------
    # Introspection / lifecycle
    # --------------------------------------------------------

    def state_of(self, handle: Hashable) -> Optional[ProcessingState]:
        """Current state of ``handle``; None when untracked (never seen, failed or forgotten)."""
        return self._states.get(handle)

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def stats(self) -> dict:
        states = {s.value: 0 for s in ProcessingState}
        for state in self._states.values():
            states[state.value] += 1
        return {
            **self._counters,
            "queue_depth": len(self._queue),
            "in_flight": len(self._in_flight),
            "tracked_handles": len(self._states),
            "states": states,
            "idle": self._idle.is_set(),
            **self.settings,
        }

    async def join(self) -> None:
        """Wait until the queue is empty and no batch is running."""
        await self._idle.wait()

    async def aclose(self) -> None:
        """Stop draining. Queued and in-flight fragments receive failure results."""
        self._closed = True
        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        for shared in list(self._neutralizing.values()):
            shared.cancel()
        self._neutralizing.clear()

        async with self._lock:
            abandoned = list(self._queue) + list(self._in_flight.values())
            self._queue.clear()
            self._in_flight.clear()
            for fragment, future in abandoned:
                self._states.pop(fragment.handle, None)
                if not future.done():
                    future.set_result(FragmentResult.failure(
                        fragment.handle, fragment.text, "scheduler closed",
                    ))
            self._drain_task = None
            self._idle.set()
        if abandoned:
            logger.info("Scheduler closed with %d unfinished fragments", len(abandoned))


def create_scheduler(
    settings,
    provider=None,
    on_result: Optional[ResultListener] = None,
) -> BatchScheduler:
    """Build a scheduler (cache, optional SQLite store, client) from Settings."""
    store = None
    if settings.CACHE_DB_PATH:
        from feelingwise.store import SQLiteCacheStore
        store = SQLiteCacheStore(settings.CACHE_DB_PATH)

    cache = ResultCache(
        ttl_seconds=settings.CACHE_TTL_SECONDS,
        max_entries=settings.CACHE_MAX_ENTRIES,
        store=store,
    )
    client = NeutralizationClient(
        provider,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        temperature=settings.LLM_TEMPERATURE,
    )
    return BatchScheduler(
        cache=cache,
        client=client,
        batch_size=settings.BATCH_SIZE,
        batch_delay=settings.BATCH_DELAY_MS / 1000,
        max_tracked_handles=settings.MAX_TRACKED_HANDLES,
        enabled=settings.ENABLED,
        auto_neutralize=settings.AUTO_NEUTRALIZE,
        on_result=on_result,
        min_chars=settings.MIN_FRAGMENT_CHARS,
        max_chars=settings.MAX_FRAGMENT_CHARS,
        fallback_ttl=settings.FALLBACK_CACHE_TTL_SECONDS,
    )
