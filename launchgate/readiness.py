"""Sequential readiness chain executor.

Runs an ordered list of readiness signals, polling each until it reports
ready, its deadline passes, or its attempt budget runs out. The first signal
that fails ends the chain; later signals are never checked.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .models import (
    FailedSignal,
    ReadinessChainResult,
    ReadinessDiagnostics,
    ReadinessTimelineEntry,
    RetryPolicy,
    SignalResult,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_SIGNAL_RETRY_INTERVAL_MS = 250
MIN_SIGNAL_RETRY_INTERVAL_MS = 10


class ChainState(str, Enum):
    """States of the chain state machine."""
    POLLING = "polling"
    SIGNAL_READY = "signal_ready"
    SIGNAL_TIMED_OUT = "signal_timed_out"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    CHAIN_COMPLETE = "chain_complete"
    CHAIN_FAILED = "chain_failed"


@dataclass
class ReadinessSignal:
    """A named async readiness predicate with its own polling policy.

    Instances are bound to the handles of one launch attempt and discarded
    once the chain resolves.
    """

    name: str
    check: Callable[[], Awaitable[SignalResult]]
    timeout_ms: int
    retry_policy: Optional[RetryPolicy] = None
    diagnostic_payload: Optional[Dict[str, Any]] = field(default=None)

    @property
    def interval_ms(self) -> int:
        interval = DEFAULT_SIGNAL_RETRY_INTERVAL_MS
        if self.retry_policy is not None and self.retry_policy.interval_ms is not None:
            interval = self.retry_policy.interval_ms
        return max(interval, MIN_SIGNAL_RETRY_INTERVAL_MS)

    @property
    def max_attempts(self) -> Optional[int]:
        if self.retry_policy is None:
            return None
        return self.retry_policy.max_attempts


async def _run_check(signal: ReadinessSignal) -> Tuple[SignalResult, Optional[str]]:
    """Invoke check(), downgrading exceptions to a not-ready result.

    Returns the result and, when the check raised, the error text.
    """
    try:
        return await signal.check(), None
    except Exception as e:
        message = str(e) or type(e).__name__
        logger.debug(f"Readiness check {signal.name} raised: {message}")
        return SignalResult(ready=False, detail=message), message


async def run_readiness_chain(signals: Sequence[ReadinessSignal]) -> ReadinessChainResult:
    """
    Run readiness signals in order until all are ready or one fails.

    The deadline of each signal is fixed when polling of that signal starts
    (start + timeout_ms); it is checked after each not-ready attempt, together
    with the attempt budget. Exceptions raised by a check count as a
    not-ready attempt.

    Args:
        signals: Ordered signals; signal i+1 is only polled after signal i is ready

    Returns:
        ReadinessChainResult with the full per-attempt timeline
    """
    started_at = utc_now()
    timeline: List[ReadinessTimelineEntry] = []
    completed: List[str] = []

    for signal in signals:
        interval_s = signal.interval_ms / 1000
        max_attempts = signal.max_attempts
        deadline = time.monotonic() + signal.timeout_ms / 1000
        attempts = 0
        last_detail: Optional[str] = None
        state = ChainState.POLLING

        logger.debug(
            f"Polling {signal.name} (timeout={signal.timeout_ms}ms, "
            f"interval={signal.interval_ms}ms, max_attempts={max_attempts})"
        )

        while state == ChainState.POLLING:
            attempts += 1
            attempt_started_at = utc_now()
            attempt_started = time.monotonic()

            result, error = await _run_check(signal)

            finished = time.monotonic()
            timed_out = not result.ready and finished >= deadline

            timeline.append(ReadinessTimelineEntry(
                signal_name=signal.name,
                attempt=attempts,
                started_at=attempt_started_at,
                finished_at=utc_now(),
                duration_ms=(finished - attempt_started) * 1000,
                ready=result.ready,
                timed_out=timed_out,
                detail=result.detail,
                error=error,
                diagnostic_payload=signal.diagnostic_payload,
            ))

            if result.ready:
                state = ChainState.SIGNAL_READY
                break

            if result.detail is not None:
                last_detail = result.detail

            if timed_out:
                state = ChainState.SIGNAL_TIMED_OUT
            elif max_attempts is not None and attempts >= max_attempts:
                state = ChainState.ATTEMPTS_EXHAUSTED
            else:
                await asyncio.sleep(interval_s)

        if state == ChainState.SIGNAL_READY:
            completed.append(signal.name)
            logger.debug(f"{signal.name} ready after {attempts} attempt(s)")
            continue

        logger.info(
            f"Readiness chain {ChainState.CHAIN_FAILED.value} at {signal.name} ({state.value}, "
            f"attempts={attempts}): {last_detail}"
        )
        return ReadinessChainResult(
            ok=False,
            completed_signals=completed,
            failed_signal=FailedSignal(
                name=signal.name,
                detail=last_detail,
                timed_out=state == ChainState.SIGNAL_TIMED_OUT,
                attempts=attempts,
            ),
            diagnostics=ReadinessDiagnostics(
                started_at=started_at,
                finished_at=utc_now(),
                timeline=timeline,
            ),
        )

    logger.debug(f"Readiness chain {ChainState.CHAIN_COMPLETE.value}: {completed}")
    return ReadinessChainResult(
        ok=True,
        completed_signals=completed,
        diagnostics=ReadinessDiagnostics(
            started_at=started_at,
            finished_at=utc_now(),
            timeline=timeline,
        ),
    )


def combine_readiness_diagnostics(runs: Sequence[ReadinessDiagnostics]) -> Optional[ReadinessDiagnostics]:
    """Concatenate the timelines of several chain runs in execution order."""
    if not runs:
        return None

    timeline: List[ReadinessTimelineEntry] = []
    for run in runs:
        timeline.extend(run.timeline)

    return ReadinessDiagnostics(
        started_at=runs[0].started_at,
        finished_at=runs[-1].finished_at,
        timeline=timeline,
    )
