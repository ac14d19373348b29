import asyncio
import logging
import time
from collections import Counter
from datetime import datetime
from typing import Dict, Optional, Set, Tuple

from pydantic import BaseModel, Field

from journeyflow.clock import Clock, utcnow
from journeyflow.models.user_state import UserJourneyState
from journeyflow.services.engine import JourneyEngine
from journeyflow.stores.base import UserStateStore

logger = logging.getLogger(__name__)


class TickReport(BaseModel):
    started_at: datetime
    users: int = 0
    outcomes: Dict[str, int] = Field(default_factory=dict)
    failures: int = 0
    timeouts: int = 0
    # Users still busy from an earlier sweep
    skipped: int = 0
    # Users this sweep stopped waiting for; they finish in the background
    pending: int = 0
    delivery_failures: int = 0
    duration_seconds: float = 0.0


class ReconciliationScheduler:
    """
    Periodically re-evaluates every user that has not finished a journey:
    fires the action a user is parked on, sends wait reminders and applies
    wait timeouts.

    Each user is handled in its own task through a bounded pool, and each
    task is cut off after ``user_timeout`` seconds. A user whose task is
    still running when the next sweep starts is skipped by that sweep, so a
    stalled delivery only ever holds up its own user.
    """

    def __init__(
        self,
        engine: JourneyEngine,
        users: UserStateStore,
        interval: float = 60.0,
        max_concurrency: int = 16,
        clock: Clock = utcnow,
        user_timeout: Optional[float] = 30.0,
    ):
        self.engine = engine
        self.users = users
        self.interval = interval
        self.max_concurrency = max(1, max_concurrency)
        self.clock = clock
        self.user_timeout = user_timeout
        self.running = False
        self.task: Optional[asyncio.Task] = None
        self.last_report: Optional[TickReport] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._in_flight: Dict[Tuple[str, str], asyncio.Task] = {}
        self._detached: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self):
        """Start the periodic reconciliation loop"""
        if self.running:
            logger.warning("Reconciliation scheduler is already running")
            return
        self.running = True
        self._stop_event = asyncio.Event()
        self.task = asyncio.create_task(self._run_loop())
        logger.info(f"=== RECONCILIATION SCHEDULER STARTED (every {self.interval}s) ===")

    async def stop(self):
        """Stop scheduling new sweeps, wait for the loop and cancel stragglers"""
        if not self.running and not self._in_flight:
            return
        self.running = False
        if self._stop_event:
            self._stop_event.set()
        if self.task:
            await self.task
            self.task = None
        stragglers = list(self._in_flight.values())
        for task in stragglers:
            task.cancel()
        if stragglers:
            await asyncio.gather(*stragglers, return_exceptions=True)
            logger.info(f"[RECONCILE] Cancelled {len(stragglers)} unfinished users")
        logger.info("=== RECONCILIATION SCHEDULER STOPPED ===")

    async def _run_loop(self):
        iteration = 0
        while self.running:
            iteration += 1
            try:
                await self.tick(wait_timeout=self.interval)
            except Exception as e:
                logger.error(f"[RECONCILE] Sweep {iteration} failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"[RECONCILE] Loop ended after {iteration} sweeps")

    async def _reconcile(self, state: UserJourneyState, now: datetime):
        async with self._semaphore:
            return await asyncio.wait_for(
                self.engine.handle_tick(state.user_id, state.journey_name, now=now),
                timeout=self.user_timeout,
            )

    def _finished(self, key: Tuple[str, str], task: asyncio.Task):
        self._in_flight.pop(key, None)
        # Results of tasks their sweep waited for are reported by that sweep
        if task not in self._detached:
            return
        self._detached.discard(task)
        if task.cancelled() or task.exception() is None:
            return
        logger.error(f"[RECONCILE] User {key[0]} in {key[1]} failed after its sweep: {task.exception()}")

    async def tick(self, now: Optional[datetime] = None, wait_timeout: Optional[float] = None) -> TickReport:
        """
        Run one sweep. Waits for every dispatched user unless ``wait_timeout``
        is given; users still running after it are reported as pending.
        """
        now = now or self.clock()
        started = time.monotonic()
        states = await self.users.list_active()
        report = TickReport(started_at=now, users=len(states))

        dispatched = {}
        for state in states:
            if state.key in self._in_flight:
                report.skipped += 1
                continue
            task = asyncio.create_task(self._reconcile(state, now))
            self._in_flight[state.key] = task
            task.add_done_callback(lambda done, key=state.key: self._finished(key, done))
            dispatched[task] = state

        if report.skipped:
            logger.warning(f"[RECONCILE] Skipping {report.skipped} users still busy from an earlier sweep")
        if not dispatched:
            logger.debug("[RECONCILE] No users to sweep")
            self.last_report = report
            return report

        logger.info(f"[RECONCILE] Sweeping {len(dispatched)} active users at {now.isoformat()}")
        done, pending = await asyncio.wait(dispatched, timeout=wait_timeout)
        report.pending = len(pending)
        self._detached.update(pending)

        outcomes = Counter()
        for task in done:
            state = dispatched[task]
            if task.cancelled():
                report.failures += 1
                continue
            error = task.exception()
            if isinstance(error, asyncio.TimeoutError):
                report.failures += 1
                report.timeouts += 1
                logger.error(
                    f"[RECONCILE] User {state.user_id} in {state.journey_name} "
                    f"timed out after {self.user_timeout}s"
                )
                continue
            if error is not None:
                report.failures += 1
                logger.error(
                    f"[RECONCILE] User {state.user_id} in {state.journey_name} failed: {error}",
                    exc_info=error,
                )
                continue
            result = task.result()
            outcomes[result.kind.value] += 1
            report.delivery_failures += len(result.failures)

        report.outcomes = dict(outcomes)
        report.duration_seconds = time.monotonic() - started
        self.last_report = report
        logger.info(
            f"[RECONCILE] Sweep done: {report.users} users, outcomes={report.outcomes}, "
            f"failures={report.failures}, timeouts={report.timeouts}, "
            f"skipped={report.skipped}, pending={report.pending}, "
            f"delivery_failures={report.delivery_failures}"
        )
        return report
