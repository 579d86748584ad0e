import json

import httpx

from textbridge.core.backend import HttpChatBackend, create_session_id
from textbridge.core.models import InboundEnvelope, ReplyChunk, ReplyFailed, ReplyIdle, ReplyStarted

ENVELOPE = InboundEnvelope(chat_id="+15559876543", sender="+15559876543", text="hi", message_id="m1")


def make_backend(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpChatBackend("http://backend.test/", client=client)


async def collect(backend):
    return [event async for event in backend.dispatch(ENVELOPE)]


def test_create_session_id():
    assert create_session_id("sendblue", "+1 (555) 987-6543") == "sendblue_15559876543"


async def test_successful_reply():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": "Hello back", "session_id": "sendblue_15559876543"})

    backend = make_backend(handler)
    events = await collect(backend)
    await backend.aclose()

    assert events == [ReplyStarted(), ReplyChunk(text="Hello back"), ReplyIdle()]
    assert seen["url"] == "http://backend.test/chat"
    assert seen["body"] == {"message": "hi", "session_id": "sendblue_15559876543"}


async def test_blank_reply_yields_no_chunk():
    backend = make_backend(lambda request: httpx.Response(200, json={"response": "  ", "session_id": "s"}))
    assert await collect(backend) == [ReplyStarted(), ReplyIdle()]
    await backend.aclose()


async def test_http_error_yields_failure():
    backend = make_backend(lambda request: httpx.Response(500, text="oops"))
    events = await collect(backend)
    await backend.aclose()

    assert events[0] == ReplyStarted()
    assert isinstance(events[1], ReplyFailed)
    assert len(events) == 2


async def test_malformed_response_yields_failure():
    backend = make_backend(lambda request: httpx.Response(200, json={"unexpected": True}))
    events = await collect(backend)
    await backend.aclose()
    assert isinstance(events[-1], ReplyFailed)


def test_session_id_ignores_number_formatting():
    assert create_session_id("sendblue", "+1 555-987-6543") == create_session_id("sendblue", "+15559876543")
