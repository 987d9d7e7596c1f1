from __future__ import annotations

from typing import Callable

import httpx
import pytest

from helpdesk.core.config import Settings
from helpdesk.tickets.models import PhotoFile


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class StaticTokens:
    def __init__(self, token: str = "token") -> None:
        self.token = token
        self.scopes: list[tuple[str, ...]] = []

    async def get_token(self, scopes) -> str:
        self.scopes.append(tuple(scopes))
        return self.token


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def tokens() -> StaticTokens:
    return StaticTokens()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ticket_api_base_url="http://tickets.test/api",
        graph_base_url="https://graph.test/v1.0",
        sharepoint_site_id="site-1",
        sharepoint_list_id="list-1",
        sharepoint_rest_url="https://tenant.sharepoint.test/sites/ITHELPDESK",
        graph_token="graph-token",
        sharepoint_token="sp-token",
        upload_initial_delay=1.0,
        upload_backoff=2.0,
        upload_max_delay=8.0,
    )


@pytest.fixture
def make_photo() -> Callable[..., PhotoFile]:
    def factory(name: str = "foto.jpg", *, size: int = 1024, content_type: str = "image/jpeg") -> PhotoFile:
        return PhotoFile(name=name, content_type=content_type, content=b"\xff" * size)

    return factory


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory
