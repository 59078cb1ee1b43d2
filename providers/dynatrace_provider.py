from __future__ import annotations

import logging
from typing import Any

import httpx

from core.errors import FetchError
from models.problem import Problem
from providers.base import ProblemSource

log = logging.getLogger(__name__)

# Guard against a server that keeps handing back the same cursor.
_MAX_PAGES = 1000


def _to_problem(raw: dict[str, Any]) -> Problem | None:
    problem_id = raw.get("problemId")
    if not problem_id:
        return None
    return Problem(
        id=str(problem_id),
        status=str(raw.get("status", "")),
        title=raw.get("title", ""),
        severity=raw.get("severityLevel", ""),
        display_id=raw.get("displayId", ""),
        payload=raw,
    )


class DynatraceProvider(ProblemSource):
    """Source adapter for the Dynatrace Problems API v2.

    Follows ``nextPageKey`` until exhausted and presents one flat list.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        tenant: str,
        api_token: str,
        problem_selector: str | None = None,
        page_size: int | None = None,
    ) -> None:
        super().__init__(client)
        self._url = f"{base_url.rstrip('/')}/e/{tenant}/api/v2/problems"
        self._headers = {
            "Authorization": f"Api-Token {api_token}",
            "Accept": "application/json",
        }
        self._selector = problem_selector
        self._page_size = page_size

    @property
    def name(self) -> str:
        return "Dynatrace"

    @property
    def url(self) -> str:
        return self._url

    def _first_page_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self._selector:
            params["problemSelector"] = self._selector
            params["sort"] = "-startTime"
        if self._page_size:
            params["pageSize"] = self._page_size
        return params

    async def _get_page(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.get(self._url, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise FetchError(f"[{self.name}] HTTP error", cause=exc) from exc

        if not resp.is_success:
            log.warning("[%s] Unexpected status %d: %s", self.name, resp.status_code, resp.text)
            raise FetchError(f"[{self.name}] API error ({resp.status_code}): {resp.text}")

        try:
            return resp.json()
        except ValueError as exc:
            raise FetchError(f"[{self.name}] Invalid JSON in response", cause=exc) from exc

    async def fetch_all_current_records(self) -> tuple[list[Problem], int]:
        log.debug("[%s] Fetching problems from %s", self.name, self._url)

        params = self._first_page_params()
        problems: list[Problem] = []
        total_count: int | None = None

        for _ in range(_MAX_PAGES):
            page = await self._get_page(params)
            if total_count is None:
                total_count = int(page.get("totalCount", 0))

            for raw in page.get("problems", []):
                problem = _to_problem(raw)
                if problem is None:
                    log.warning("[%s] Skipping entry without problemId", self.name)
                    continue
                problems.append(problem)

            next_key = page.get("nextPageKey")
            if not next_key:
                break
            params = {"nextPageKey": next_key}
        else:
            raise FetchError(f"[{self.name}] Gave up after {_MAX_PAGES} pages")

        log.info(
            "[%s] Fetched %d problem(s) (total count: %d)",
            self.name,
            len(problems),
            total_count or 0,
        )
        return problems, total_count or 0
