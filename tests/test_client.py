import json
from datetime import datetime, timezone

import httpx
import pytest

from textbridge.adapters.sendblue.client import SendblueClient
from textbridge.core.exceptions import TransientProviderError


def make_client(handler):
    return SendblueClient(
        api_key="key-id",
        api_secret="secret-key",
        phone_number="+15550001111",
        base_url="https://api.test",
        transport=httpx.MockTransport(handler),
    )


async def test_fetch_inbound_sends_auth_and_cursor():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json={"data": [
            {"message_handle": "m1", "from_number": "+15559876543", "content": "hi"},
            {"message_handle": "m2", "from_number": "+15550001111", "content": "echo", "is_outbound": True},
            {"content": "missing ids"},
        ]})

    client = make_client(handler)
    messages = await client.fetch_inbound(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    await client.aclose()

    assert [m.message_handle for m in messages] == ["m1"]
    request = seen["request"]
    assert request.url.path == "/api/v2/messages"
    assert request.headers["sb-api-key-id"] == "key-id"
    assert request.headers["sb-api-secret-key"] == "secret-key"
    assert request.url.params["created_at_gte"] == "2024-05-01T12:00:00+00:00"
    assert request.url.params["is_outbound"] == "false"


async def test_fetch_inbound_accepts_bare_list():
    client = make_client(lambda request: httpx.Response(200, json=[
        {"message_handle": "m1", "from_number": "+15559876543"},
    ]))
    messages = await client.fetch_inbound(datetime(2024, 5, 1))
    await client.aclose()
    assert len(messages) == 1


async def test_send_message_returns_receipt():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message_handle": "out-9", "status": "QUEUED"})

    client = make_client(handler)
    receipt = await client.send_message("+15559876543", "hello", media_url="https://cdn.example.com/a.png")
    await client.aclose()

    assert receipt.message_handle == "out-9"
    assert receipt.status == "QUEUED"
    assert seen["body"] == {
        "number": "+15559876543",
        "from_number": "+15550001111",
        "content": "hello",
        "media_url": "https://cdn.example.com/a.png",
    }


async def test_send_without_handle_is_an_error():
    client = make_client(lambda request: httpx.Response(200, json={"status": "QUEUED"}))
    with pytest.raises(TransientProviderError):
        await client.send_message("+15559876543", "hello")
    await client.aclose()


async def test_error_status_raises_transient_error():
    client = make_client(lambda request: httpx.Response(503, text="unavailable"))
    with pytest.raises(TransientProviderError) as excinfo:
        await client.get_message_status("out-1")
    await client.aclose()
    assert excinfo.value.status_code == 503


async def test_network_error_raises_transient_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(TransientProviderError):
        await client.mark_read("+15559876543")
    await client.aclose()


async def test_get_message_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["handle"] == "out-1"
        return httpx.Response(200, json={"status": "DELIVERED"})

    client = make_client(handler)
    assert await client.get_message_status("out-1") == "DELIVERED"
    await client.aclose()


async def test_upload_media_returns_hosted_url(tmp_path):
    attachment = tmp_path / "chart.png"
    attachment.write_bytes(b"\x89PNG")
    client = make_client(lambda request: httpx.Response(200, json={"media_url": "https://cdn.example.com/chart.png"}))

    assert await client.upload_media(str(attachment)) == "https://cdn.example.com/chart.png"
    with pytest.raises(TransientProviderError):
        await client.upload_media(str(tmp_path / "missing.png"))
    await client.aclose()


async def test_fetch_inbound_keeps_rows_with_malformed_optional_fields():
    client = make_client(lambda request: httpx.Response(200, json={"data": [
        {"message_handle": "m1", "from_number": "+15559876543", "date_sent": "Tue May 21 2024"},
        {"message_handle": "m2", "from_number": "+15559876543", "to_number": 15550001111, "status": 3},
        {"message_handle": "m3", "from_number": "+15559876543", "date_sent": ""},
    ]}))
    messages = await client.fetch_inbound(datetime(2024, 5, 1, tzinfo=timezone.utc))
    await client.aclose()

    assert [m.message_handle for m in messages] == ["m1", "m2", "m3"]
    assert messages[0].date_sent is None
    assert messages[1].to_number == "15550001111"
    assert messages[1].status == "3"
