from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from textbridge.core.models import InboundEnvelope, InboundMessage


def test_numbers_are_coerced_to_strings():
    message = InboundMessage.model_validate({
        "message_handle": 12345,
        "from_number": 15559876543,
        "to_number": 15550001111,
        "status": 3,
        "content": 42,
    })
    assert message.message_handle == "12345"
    assert message.from_number == "15559876543"
    assert message.to_number == "15550001111"
    assert message.status == "3"
    assert message.text == "42"


@pytest.mark.parametrize("value", ["", "Tue May 21 2024", "yesterday", {"nested": True}])
def test_unparseable_date_sent_becomes_none(value):
    message = InboundMessage.model_validate({"message_handle": "m1", "from_number": "+1555", "date_sent": value})
    assert message.date_sent is None


def test_iso_date_sent_is_parsed():
    message = InboundMessage.model_validate({
        "message_handle": "m1",
        "from_number": "+1555",
        "date_sent": "2024-05-21T10:00:00Z",
    })
    assert message.date_sent == datetime(2024, 5, 21, 10, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("value, expected", [
    (True, True),
    ("true", True),
    ("FALSE", False),
    (None, False),
    ("garbage", False),
    (1, True),
])
def test_is_outbound_is_lenient(value, expected):
    message = InboundMessage.model_validate({"message_handle": "m1", "from_number": "+1555", "is_outbound": value})
    assert message.is_outbound is expected


@pytest.mark.parametrize("payload", [
    {"from_number": "+1555"},
    {"message_handle": "m1"},
    {"message_handle": "", "from_number": "+1555"},
])
def test_identifiers_are_still_required(payload):
    with pytest.raises(ValidationError):
        InboundMessage.model_validate(payload)


def test_envelope_body_appends_media_notice():
    envelope = InboundEnvelope(
        chat_id="+1555", sender="+1555", text="look", message_id="m1", media_url="https://cdn.example.com/a.jpg",
    )
    assert envelope.body == "look\n\n[Media: https://cdn.example.com/a.jpg]"
