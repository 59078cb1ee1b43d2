from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

import httpx

from core.errors import DeliveryError
from core.retry import retry
from models.problem import Problem

log = logging.getLogger(__name__)

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH")
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_ATTEMPTS = 3
_MAX_ERROR_BODY = 2000


class DeliveryMode(str, Enum):
    """How a connector receives the problems due in one cycle.

    INDIVIDUAL: one request per problem, body is a single JSON object.
    BATCH:      one request per cycle, body is a JSON array.
    """

    INDIVIDUAL = "individual"
    BATCH = "batch"


@dataclass(frozen=True)
class ConnectorConfig:
    """Immutable descriptor for one downstream HTTP target."""

    name: str
    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    # httpx applies this to each phase (connect, read, write, pool), not
    # to the request as a whole, so one call can take longer in total.
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    verify_ssl: bool = True
    mode: DeliveryMode = DeliveryMode.INDIVIDUAL


def problem_payload(problem: Problem) -> dict[str, Any]:
    """JSON body sent for one problem: the raw remote record when we have it."""
    if problem.payload:
        return problem.payload
    return {
        "problemId": problem.id,
        "displayId": problem.display_id,
        "title": problem.title,
        "status": problem.status,
        "severityLevel": problem.severity,
    }


class Connector:
    """One downstream HTTP target.

    Builds the outbound request from its ``ConnectorConfig``, classifies
    the response (anything outside 2xx is a failure) and retries through
    ``core.retry.retry``.  Each connector owns an ``httpx.AsyncClient``
    because timeout and TLS verification are per connector.
    """

    def __init__(
        self,
        config: ConnectorConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        if not config.verify_ssl:
            log.warning(
                "TLS verification disabled for connector '%s'. "
                "Only use this against trusted test endpoints.",
                config.name,
            )
        self._client = httpx.AsyncClient(
            timeout=config.timeout_seconds,
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> ConnectorConfig:
        return self._config

    @property
    def mode(self) -> DeliveryMode:
        return self._config.mode

    @property
    def is_batch_mode(self) -> bool:
        return self._config.mode is DeliveryMode.BATCH

    async def send(self, body: Any) -> httpx.Response:
        """Perform exactly one request.  Raises DeliveryError on failure."""
        cfg = self._config
        try:
            request = self._client.build_request(
                cfg.method,
                cfg.url,
                json=body,
                headers=cfg.headers,
            )
        except (TypeError, ValueError) as exc:
            # unserialisable body or a header value that is not ASCII
            raise DeliveryError(cfg.name, f"invalid request: {exc}", cause=exc) from exc

        try:
            resp = await self._client.send(request)
        except httpx.HTTPError as exc:
            raise DeliveryError(cfg.name, f"transport error: {exc}", cause=exc) from exc

        if not resp.is_success:
            text = resp.text[:_MAX_ERROR_BODY]
            log.error(
                "Connector '%s' returned HTTP %d: %s",
                cfg.name,
                resp.status_code,
                text,
            )
            raise DeliveryError(
                cfg.name,
                f"HTTP {resp.status_code}: {text}",
                status_code=resp.status_code,
                body=text,
            )
        return resp

    async def deliver(self, problem: Problem) -> httpx.Response:
        log.debug("Sending problem %s to '%s'", problem.id, self.name)
        body = problem_payload(problem)
        return await retry(
            f"forward {problem.id} to {self.name}",
            self._config.retry_attempts,
            lambda: self.send(body),
        )

    async def deliver_batch(self, problems: Sequence[Problem]) -> httpx.Response:
        log.debug("Sending batch of %d problem(s) to '%s'", len(problems), self.name)
        body = [problem_payload(p) for p in problems]
        return await retry(
            f"forward batch to {self.name}",
            self._config.retry_attempts,
            lambda: self.send(body),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
