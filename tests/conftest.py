from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from connectors.base import Connector, ConnectorConfig, DeliveryMode
from core.errors import FetchError
from core.registry import ConnectorRegistry
from core.engine import RelayEngine
from core.tracking_store import TrackingStore
from models.problem import Problem
from providers.base import ProblemSource


def make_problem(problem_id: str, status: str = "OPEN", **kwargs) -> Problem:
    title = kwargs.pop("title", f"Problem {problem_id}")
    severity = kwargs.pop("severity", "AVAILABILITY")
    return Problem(
        id=problem_id,
        status=status,
        title=title,
        severity=severity,
        display_id=kwargs.pop("display_id", f"P-{problem_id}"),
        payload={"problemId": problem_id, "status": status, "title": title},
    )


class FakeSource(ProblemSource):
    """Returns one scripted batch per fetch; an exception in the script is raised."""

    def __init__(self, batches: list, on_fetch: Callable[[int], None] | None = None) -> None:
        super().__init__(client=None)
        self._batches = list(batches)
        self._on_fetch = on_fetch
        self.calls = 0

    @property
    def name(self) -> str:
        return "Fake"

    async def fetch_all_current_records(self) -> tuple[list[Problem], int]:
        self.calls += 1
        if self._on_fetch is not None:
            self._on_fetch(self.calls)
        batch = self._batches.pop(0) if self._batches else []
        if isinstance(batch, Exception):
            raise batch
        return list(batch), len(batch)


class RecordingEndpoint:
    """``httpx.MockTransport`` handler that records every request."""

    def __init__(self, status_code: int = 200, text: str = "ok") -> None:
        self.status_code = status_code
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text=self.text)

    @property
    def bodies(self) -> list:
        return [json.loads(r.content) for r in self.requests]


def make_connector(
    name: str,
    endpoint: Callable[[httpx.Request], httpx.Response],
    mode: DeliveryMode = DeliveryMode.INDIVIDUAL,
    **kwargs,
) -> Connector:
    config = ConnectorConfig(
        name=name,
        url=kwargs.pop("url", f"https://{name}.example.com/hook"),
        mode=mode,
        retry_attempts=kwargs.pop("retry_attempts", 1),
        **kwargs,
    )
    return Connector(config, transport=httpx.MockTransport(endpoint))


def make_engine(store: TrackingStore, source: ProblemSource, *connectors: Connector, interval: float = 60) -> RelayEngine:
    registry = ConnectorRegistry()
    for connector in connectors:
        registry.register(connector)
    return RelayEngine(source=source, store=store, registry=registry, interval_seconds=interval)


@pytest.fixture
def store(tmp_path):
    s = TrackingStore.open(str(tmp_path / "relay.db"))
    yield s
    s.close()


@pytest.fixture
def fetch_error() -> FetchError:
    return FetchError("[Fake] API error (503): unavailable")
