from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from models.problem import Problem


class ProblemSource(ABC):
    """Abstract base for remote problem sources.

    A concrete source fetches every currently visible problem from its
    remote API, follows any pagination itself, and normalises entries into
    ``Problem`` objects.  The relay engine never sees cursors.

    A shared ``httpx.AsyncClient`` is injected at construction time.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable source name (e.g. 'Dynatrace')."""

    @abstractmethod
    async def fetch_all_current_records(self) -> tuple[list[Problem], int]:
        """Return ``(problems, total_count)`` across all pages.

        Raises ``FetchError`` when the remote API is unreachable or answers
        with a non-2xx status.
        """

    async def test_connection(self) -> int:
        """Fetch once and return the remote total count."""
        _, total = await self.fetch_all_current_records()
        return total
