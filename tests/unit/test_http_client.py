"""Unit tests for the webhook HTTP client."""

import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from adsync_jobs.errors import RemoteHttpError
from adsync_jobs.http_client import WebhookClient


def make_response(status=200, body='{"ok": true}', content_type="application/json", data=None):
    resp = MagicMock()
    resp.status = status
    resp.content_type = content_type
    resp.headers = {"Content-Type": content_type}
    resp.text = AsyncMock(return_value=body)
    resp.json = AsyncMock(return_value=data if data is not None else {"ok": True})
    return resp


@pytest.fixture
def mock_session():
    """Patch ClientSession; yields (session class mock, session)."""
    with patch("aiohttp.ClientSession") as session_cls:
        session = MagicMock()
        session_cls.return_value.__aenter__.return_value = session
        yield session_cls, session


@pytest.mark.asyncio
async def test_json_response(mock_session):
    session_cls, session = mock_session
    session.request.return_value.__aenter__.return_value = make_response()

    result = await WebhookClient().request(
        "post", "https://hooks.example.com/a", json_body={"x": 1}, timeout=5
    )

    assert result == {
        "status_code": 200,
        "headers": {"Content-Type": "application/json"},
        "data": {"ok": True},
    }
    args, kwargs = session.request.call_args
    assert args == ("POST", "https://hooks.example.com/a")
    assert kwargs["json"] == {"x": 1}
    assert session_cls.call_args.kwargs["timeout"].total == 5


@pytest.mark.asyncio
async def test_text_response_and_default_timeout(mock_session):
    session_cls, session = mock_session
    session.request.return_value.__aenter__.return_value = make_response(
        body="accepted", content_type="text/plain"
    )

    result = await WebhookClient(timeout=12).request("GET", "https://hooks.example.com/b")

    assert result["data"] == "accepted"
    assert session_cls.call_args.kwargs["timeout"].total == 12


@pytest.mark.asyncio
async def test_http_error_status(mock_session):
    _, session = mock_session
    session.request.return_value.__aenter__.return_value = make_response(
        status=429, body="Too many requests", content_type="text/plain"
    )

    with pytest.raises(RemoteHttpError) as exc_info:
        await WebhookClient().request("GET", "https://hooks.example.com/c")

    assert exc_info.value.status_code == 429
    assert exc_info.value.response_body == "Too many requests"
    assert exc_info.value.code is None


@pytest.mark.asyncio
async def test_timeout(mock_session):
    _, session = mock_session
    session.request.side_effect = asyncio.TimeoutError()

    with pytest.raises(RemoteHttpError) as exc_info:
        await WebhookClient().request("GET", "https://hooks.example.com/d")

    assert exc_info.value.status_code == 0
    assert exc_info.value.code == "ETIMEDOUT"


@pytest.mark.asyncio
async def test_dns_failure(mock_session):
    _, session = mock_session
    session.request.side_effect = aiohttp.ClientConnectorError(
        MagicMock(), socket.gaierror(-2, "Name or service not known")
    )

    with pytest.raises(RemoteHttpError) as exc_info:
        await WebhookClient().request("GET", "https://nowhere.invalid")

    assert exc_info.value.code == "ENOTFOUND"


@pytest.mark.asyncio
async def test_connection_refused(mock_session):
    _, session = mock_session
    session.request.side_effect = aiohttp.ClientConnectorError(
        MagicMock(), ConnectionRefusedError(111, "Connection refused")
    )

    with pytest.raises(RemoteHttpError) as exc_info:
        await WebhookClient().request("GET", "https://localhost:1")

    assert exc_info.value.code == "ECONNREFUSED"


@pytest.mark.asyncio
async def test_other_client_error(mock_session):
    _, session = mock_session
    session.request.side_effect = aiohttp.ServerDisconnectedError()

    with pytest.raises(RemoteHttpError) as exc_info:
        await WebhookClient().request("GET", "https://hooks.example.com/e")

    assert exc_info.value.code == "ECONNRESET"
    assert str(exc_info.value).startswith("HTTP 0: Network error")
