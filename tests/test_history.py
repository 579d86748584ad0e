from textbridge.core.history import ConversationHistory, chat_dir_name


def test_chat_dir_name_is_filesystem_safe():
    assert chat_dir_name("+1 (555) 987-6543") == "15559876543"
    assert chat_dir_name("+++") == "unknown"


async def test_record_and_load(tmp_path):
    history = ConversationHistory(tmp_path)
    await history.record_inbound("+15559876543", "+15559876543", "hi")
    await history.record_outbound("+15559876543", "+15550001111", "hello back")

    events = await history.load_history("+15559876543")
    assert [e["content"] for e in events] == ["hi", "hello back"]
    assert [e["is_outbound"] for e in events] == [False, True]
    assert await history.load_history("+15559876543", limit=1) == events[-1:]


async def test_list_chats_orders_by_activity(tmp_path):
    history = ConversationHistory(tmp_path)
    await history.record_inbound("+15550000001", "+15550000001", "first")
    await history.record_inbound("+15550000002", "+15550000002", "second")
    await history.record_inbound("+15550000002", "+15550000002", "third")

    chats = history.list_chats()
    assert chats[0]["chat_id"] == "+15550000002"
    assert chats[0]["message_count"] == 2
    assert chats[0]["last_message"] == "third"


async def test_unknown_chat_is_empty_and_clear_removes(tmp_path):
    history = ConversationHistory(tmp_path)
    assert await history.load_history("+15550000009") == []

    await history.record_inbound("+15550000001", "+15550000001", "hi")
    await history.clear("+15550000001")
    assert history.list_chats() == []


async def test_differently_formatted_numbers_share_one_chat(tmp_path):
    history = ConversationHistory(tmp_path)
    await history.record_inbound("+1 (555) 987-6543", "+1 (555) 987-6543", "hi")
    await history.record_inbound("+15559876543", "+15559876543", "again")

    assert len(history.list_chats()) == 1
    assert len(await history.load_history("15559876543")) == 2
