from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Sequence

import httpx

from connectors.base import Connector
from core.errors import DeliveryError, StoreError
from core.registry import ConnectorRegistry
from core.tracking_store import TrackingStore
from models.problem import (
    DeliveryHistoryEntry,
    DeliveryOutcome,
    Problem,
    StoreStats,
    TrackedProblem,
)
from providers.base import ProblemSource

log = logging.getLogger(__name__)

TEST_PROBLEM_ID = "TEST-12345"


class Classification(str, Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass
class CycleSummary:
    fetched: int = 0
    new: int = 0
    changed: int = 0
    unchanged: int = 0
    errors: int = 0
    delivery_tasks: int = 0

    @property
    def forwarded(self) -> int:
        return self.new + self.changed


def synthetic_problem() -> Problem:
    """Record sent by ``test_connector``; never stored."""
    now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    payload = {
        "problemId": TEST_PROBLEM_ID,
        "displayId": "P-TEST",
        "title": "Test problem from problem-relay",
        "impactLevel": "INFRASTRUCTURE",
        "severityLevel": "CUSTOM_ALERT",
        "status": "OPEN",
        "affectedEntities": [],
        "impactedEntities": [],
        "rootCauseEntity": None,
        "managementZones": [],
        "entityTags": [],
        "problemFilters": [],
        "startTime": now_ms,
        "endTime": -1,
    }
    return Problem(
        id=TEST_PROBLEM_ID,
        status="OPEN",
        title=payload["title"],
        severity="CUSTOM_ALERT",
        display_id="P-TEST",
        payload=payload,
    )


class RelayEngine:
    """Runs the poll cycle: fetch, classify, fan out, record.

    Classification writes to the tracking store *before* any delivery is
    attempted.  A problem whose status has been recorded is never
    re-delivered for the same transition, even if every connector failed;
    ``clear_cache()`` is the only way to replay it.

    Cycles never overlap: the next wait only starts once every delivery
    task of the current cycle has finished.
    """

    def __init__(
        self,
        source: ProblemSource,
        store: TrackingStore,
        registry: ConnectorRegistry,
        interval_seconds: float,
        shutdown: asyncio.Event | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._registry = registry
        self._interval = interval_seconds
        self._shutdown = shutdown or asyncio.Event()

    @property
    def source(self) -> ProblemSource:
        return self._source

    @property
    def connectors(self) -> list[Connector]:
        return self._registry.connectors

    # -- poll loop ----------------------------------------------------------

    async def run_forever(self) -> None:
        """Poll until the shutdown event is set.

        A failed cycle is logged and the loop carries on.  Shutdown is only
        observed between cycles, so in-flight deliveries always finish.
        """
        log.info(
            "Relay engine starting: source=%s interval=%ss connectors=%d",
            self._source.name,
            self._interval,
            len(self._registry),
        )
        while not self._shutdown.is_set():
            try:
                await self.run_one_cycle()
            except Exception:
                log.exception("Polling cycle failed")

            log.debug("Sleeping for %ss until next poll", self._interval)
            if await self._wait_for_shutdown():
                break
        log.info("Relay engine stopped")

    def stop(self) -> None:
        self._shutdown.set()

    async def _wait_for_shutdown(self) -> bool:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def run_one_cycle(self) -> CycleSummary:
        """Run a single fetch/classify/deliver cycle.

        Raises ``FetchError`` if the source cannot be read; nothing is
        classified or delivered in that case.
        """
        log.info("Polling %s for problems", self._source.name)
        problems, total = await self._source.fetch_all_current_records()

        summary = CycleSummary(fetched=len(problems))
        due: list[Problem] = []

        for problem in problems:
            try:
                verdict = await self.classify(problem)
            except StoreError as exc:
                summary.errors += 1
                log.error("Error processing problem %s: %s", problem.id, exc)
                continue

            if verdict is Classification.NEW:
                summary.new += 1
                due.append(problem)
            elif verdict is Classification.CHANGED:
                summary.changed += 1
                due.append(problem)
            else:
                summary.unchanged += 1

        if due:
            summary.delivery_tasks = await self.fan_out(due)

        log.info(
            "Poll complete: %d fetched (of %d), %d new, %d status changes, %d unchanged, %d errors",
            summary.fetched,
            total,
            summary.new,
            summary.changed,
            summary.unchanged,
            summary.errors,
        )
        return summary

    # -- classification -----------------------------------------------------

    async def classify(self, problem: Problem) -> Classification:
        """Compare ``problem`` with the store and record what was observed."""
        log.debug("Processing problem: %s", problem.summary())
        tracked = await asyncio.to_thread(self._store.lookup, problem.id)

        if tracked is None:
            log.info("New problem detected: %s", problem.summary())
            now = datetime.now(timezone.utc)
            await asyncio.to_thread(
                self._store.insert,
                TrackedProblem(
                    problem_id=problem.id,
                    status=problem.status,
                    title=problem.title,
                    severity=problem.severity or None,
                    first_seen_at=now,
                    last_forwarded_at=now,
                    last_status_change_at=now,
                    forward_count=1,
                ),
            )
            return Classification.NEW

        if tracked.status != problem.status:
            log.info(
                "Status change detected for %s: %s -> %s",
                problem.id,
                tracked.status,
                problem.status,
            )
            await asyncio.to_thread(self._store.update_status, problem.id, problem.status)
            return Classification.CHANGED

        log.debug("Problem %s unchanged, skipping", problem.id)
        return Classification.UNCHANGED

    # -- delivery -------------------------------------------------------------

    async def fan_out(self, problems: Sequence[Problem]) -> int:
        """Deliver ``problems`` to every connector concurrently.

        Batch connectors get one task carrying all problems; individual
        connectors get one task per problem.  Returns the task count once
        all of them have finished.
        """
        batch, individual = self._registry.partition()
        log.info("Forwarding %d problem(s) to %d connector(s)", len(problems), len(self._registry))

        jobs: list[tuple[str, Awaitable[bool]]] = []
        for connector in batch:
            jobs.append((f"batch-{connector.name}", self._deliver_batch(connector, problems)))
        for connector in individual:
            for problem in problems:
                jobs.append(
                    (f"deliver-{connector.name}-{problem.id}", self._deliver_one(connector, problem))
                )

        tasks = [asyncio.create_task(coro, name=name) for name, coro in jobs]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, BaseException):
                log.error("Delivery task %s crashed: %r", task.get_name(), result)
        return len(tasks)

    async def _deliver_one(self, connector: Connector, problem: Problem) -> bool:
        try:
            resp = await connector.deliver(problem)
        except DeliveryError as exc:
            log.error("Failed to forward %s to '%s': %s", problem.id, connector.name, exc)
            await self._record(problem.id, connector.name, DeliveryOutcome.FAILED, exc.status_code, str(exc))
            return False
        except Exception as exc:
            log.exception("Unexpected error forwarding %s to '%s'", problem.id, connector.name)
            await self._record(problem.id, connector.name, DeliveryOutcome.FAILED, None, repr(exc))
            return False

        log.info("Forwarded %s to '%s' (status: %d)", problem.id, connector.name, resp.status_code)
        await self._record(problem.id, connector.name, DeliveryOutcome.SUCCESS, resp.status_code)
        return True

    async def _deliver_batch(self, connector: Connector, problems: Sequence[Problem]) -> bool:
        try:
            resp = await connector.deliver_batch(problems)
        except DeliveryError as exc:
            log.error("Failed to forward batch to '%s': %s", connector.name, exc)
            for problem in problems:
                await self._record(
                    problem.id, connector.name, DeliveryOutcome.FAILED, exc.status_code, str(exc)
                )
            return False
        except Exception as exc:
            log.exception("Unexpected error forwarding batch to '%s'", connector.name)
            for problem in problems:
                await self._record(problem.id, connector.name, DeliveryOutcome.FAILED, None, repr(exc))
            return False

        log.info(
            "Forwarded batch of %d problem(s) to '%s' (status: %d)",
            len(problems),
            connector.name,
            resp.status_code,
        )
        for problem in problems:
            await self._record(problem.id, connector.name, DeliveryOutcome.SUCCESS, resp.status_code)
        return True

    async def _record(
        self,
        problem_id: str,
        connector_name: str,
        outcome: DeliveryOutcome,
        response_code: int | None = None,
        error_message: str | None = None,
    ) -> None:
        entry = DeliveryHistoryEntry(
            problem_id=problem_id,
            connector_name=connector_name,
            outcome=outcome,
            attempted_at=datetime.now(timezone.utc),
            response_code=response_code,
            error_message=error_message,
        )
        await asyncio.to_thread(self._store.append_history, entry)

    # -- administrative -----------------------------------------------------

    async def get_stats(self) -> StoreStats:
        return await asyncio.to_thread(self._store.stats)

    async def clear_cache(self) -> int:
        """Forget every tracked problem so the next cycle treats them as new."""
        removed = await asyncio.to_thread(self._store.clear_all)
        log.info("Cleared %d problem(s) from cache", removed)
        return removed

    async def test_connector(self, name: str) -> httpx.Response:
        """Send one synthetic problem through ``name`` without touching the
        tracking store.  Raises ``ConfigError`` or ``DeliveryError``."""
        connector = self._registry.get(name)
        problem = synthetic_problem()
        log.info("Testing connector '%s'", name)
        if connector.is_batch_mode:
            resp = await connector.deliver_batch([problem])
        else:
            resp = await connector.deliver(problem)
        log.info("Connector '%s' test successful (status: %d)", name, resp.status_code)
        return resp

    async def aclose(self) -> None:
        for connector in self._registry.connectors:
            await connector.aclose()
