from __future__ import annotations

import base64
import json

import httpx
import pytest
from pydantic import ValidationError as PydanticValidationError

from helpdesk.core.config import Settings
from helpdesk.errors import NetworkError, UploadConflict, UploadRejected
from helpdesk.sharepoint.attachments import AttachmentStore, GraphAttachmentStrategy, RestAttachmentStrategy
from helpdesk.sharepoint.retry import RetryPolicy

REST_URL = "https://tenant.sharepoint.test/sites/ITHELPDESK"


def _graph(http, tokens) -> GraphAttachmentStrategy:
    return GraphAttachmentStrategy(
        http,
        tokens,
        graph_base_url="https://graph.test/v1.0",
        site_id="site-1",
        list_id="list-1",
    )


def _rest(http, tokens, sleep, policy: RetryPolicy | None = None) -> RestAttachmentStrategy:
    return RestAttachmentStrategy(
        http,
        tokens,
        rest_url=REST_URL,
        list_id="list-1",
        scopes=("https://tenant.sharepoint.test/.default",),
        retry_policy=policy or RetryPolicy(),
        sleep=sleep,
    )


def _rest_ok(name: str = "foto.jpg") -> httpx.Response:
    return httpx.Response(
        200,
        json={"d": {"FileName": name, "ServerRelativeUrl": f"/sites/ITHELPDESK/Lists/Tickets/Attachments/101/{name}"}},
    )


def test_default_policy_waits_two_four_eight():
    policy = RetryPolicy()
    assert policy.schedule() == [2.0, 4.0, 8.0]
    assert policy.max_attempts == 4


@pytest.mark.parametrize(
    "kwargs",
    [{"initial_delay": 0}, {"backoff": 1.0}, {"initial_delay": 5.0, "max_delay": 8.0}],
)
def test_policy_that_could_never_retry_is_refused(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_settings_refuse_disabling_the_conflict_retry():
    with pytest.raises(PydanticValidationError):
        Settings(upload_initial_delay=0)
    with pytest.raises(PydanticValidationError):
        Settings(upload_backoff=1.0)
    with pytest.raises(PydanticValidationError):
        Settings(upload_initial_delay=5.0, upload_max_delay=8.0)


@pytest.mark.asyncio
async def test_graph_upload_sends_base64_json(mock_http, tokens, make_photo):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"name": "foto.jpg"})

    photo = make_photo(size=16)
    async with mock_http(handler) as http:
        store = AttachmentStore([_graph(http, tokens)])
        descriptor = await store.upload("101", photo)

    assert descriptor.transport == "graph"
    assert descriptor.file_name == "foto.jpg"
    assert seen[0].url.path == "/v1.0/sites/site-1/lists/list-1/items/101/attachments"
    body = json.loads(seen[0].content)
    assert body == {"name": "foto.jpg", "contentBytes": base64.b64encode(photo.content).decode()}


@pytest.mark.asyncio
async def test_falls_back_to_rest_when_graph_is_rejected(mock_http, tokens, sleep, make_photo):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.host == "graph.test":
            return httpx.Response(400, json={"error": {"message": "Attachments not supported"}})
        return _rest_ok("bukti-TKT-1-foto's.jpg")

    photo = make_photo("bukti-TKT-1-foto's.jpg")
    async with mock_http(handler) as http:
        store = AttachmentStore([_graph(http, tokens), _rest(http, tokens, sleep)])
        descriptor = await store.upload("101", photo)

    assert descriptor.transport == "rest"
    assert descriptor.server_relative_url.endswith("bukti-TKT-1-foto's.jpg")
    rest_request = seen[1]
    assert rest_request.content == photo.content
    assert rest_request.headers["Content-Type"] == "application/octet-stream"
    assert rest_request.headers["Accept"] == "application/json;odata=verbose"
    raw_path = rest_request.url.raw_path.decode()
    assert "items(101)/AttachmentFiles/add(FileName=" in raw_path
    assert "foto%27%27s.jpg" in raw_path
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_conflict_is_retried_until_success(mock_http, tokens, sleep, make_photo):
    responses = [
        httpx.Response(409, json={"error": {"message": {"value": "Save conflict"}}}),
        httpx.Response(412, text="precondition failed"),
        _rest_ok(),
    ]
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return responses[len(calls) - 1]

    async with mock_http(handler) as http:
        descriptor = await _rest(http, tokens, sleep).upload("101", make_photo())

    assert descriptor.file_name == "foto.jpg"
    assert len(calls) == 3
    assert sleep.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_upload_conflict(mock_http, tokens, sleep, make_photo):
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(409, json={"error": {"message": {"value": "Save conflict"}}})

    async with mock_http(handler) as http:
        with pytest.raises(UploadConflict) as exc_info:
            await _rest(http, tokens, sleep).upload("101", make_photo())

    assert len(calls) == 4
    assert sleep.delays == [1.0, 2.0, 4.0, 8.0]
    assert exc_info.value.status_code == 409
    assert "Save conflict" in exc_info.value.message


@pytest.mark.asyncio
async def test_non_conflict_rejection_is_not_retried(mock_http, tokens, sleep, make_photo):
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, json={"error": {"message": {"value": "Access denied"}}})

    async with mock_http(handler) as http:
        with pytest.raises(UploadRejected):
            await _rest(http, tokens, sleep).upload("101", make_photo())

    assert len(calls) == 1
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_store_raises_last_error_when_every_transport_fails(mock_http, tokens, sleep, make_photo):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "graph.test":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(500, text="server error")

    async with mock_http(handler) as http:
        store = AttachmentStore([_graph(http, tokens), _rest(http, tokens, sleep)])
        with pytest.raises(UploadRejected) as exc_info:
            await store.upload("101", make_photo())

    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_graph_transport_error_is_a_network_error(mock_http, tokens, make_photo):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with mock_http(handler) as http:
        with pytest.raises(NetworkError):
            await _graph(http, tokens).upload("101", make_photo())


def test_store_needs_a_strategy():
    with pytest.raises(ValueError):
        AttachmentStore([])
