from agent.context_builder import (
    ContextBuilder,
    append_messages,
    build_context,
    dedupe_consecutive,
    rolling_window,
)
from agent.schemas import Message, Role, ToolCall


def _conversation(n):
    return [Message.user(f"question {i}") if i % 2 == 0 else Message.assistant(f"answer {i}") for i in range(n)]


def test_consecutive_duplicates_dropped():
    history = [Message.user("hi"), Message.user("hi"), Message.assistant("hello"), Message.user("hi")]
    deduped = dedupe_consecutive(history)
    assert [m.content for m in deduped] == ["hi", "hello", "hi"]


def test_dedupe_is_idempotent():
    history = [Message.user("a"), Message.user("a"), Message.assistant("b"), Message.assistant("b")]
    once = dedupe_consecutive(history)
    assert dedupe_consecutive(once) == once


def test_same_content_different_role_kept():
    history = [Message.user("ok"), Message.assistant("ok")]
    assert len(dedupe_consecutive(history)) == 2


def test_tool_results_for_distinct_calls_kept():
    history = [
        Message.tool('{"status": "ok"}', tool_call_id="call_1", name="handoff"),
        Message.tool('{"status": "ok"}', tool_call_id="call_2", name="handoff"),
    ]
    assert len(dedupe_consecutive(history)) == 2


def test_window_bound_holds():
    builder = ContextBuilder()
    injected = [Message.system("task"), Message.system("note")]
    for window in (1, 3, 10):
        context = builder.build(_conversation(25), injected, window_size=window)
        assert len(context) <= 1 + len(injected) + window


def test_order_is_base_then_injected_then_history():
    builder = ContextBuilder(shop_name="Vita Shop")
    context = builder.build(_conversation(4), [Message.system("task")], window_size=2)
    assert context[0].role == Role.SYSTEM
    assert "Vita Shop" in context[0].content
    assert context[1].content == "task"
    assert [m.content for m in context[2:]] == ["question 2", "answer 3"]


def test_zero_window_yields_no_history():
    context = build_context(_conversation(6), [Message.system("task")], window_size=0)
    assert all(m.role == Role.SYSTEM for m in context)
    assert len(context) == 2


def test_base_prompt_can_be_disabled():
    builder = ContextBuilder(base_system_prompt=False)
    context = builder.build(_conversation(2), [], window_size=5)
    assert [m.role for m in context] == [Role.USER, Role.ASSISTANT]


def test_system_time_is_rendered_deterministically():
    builder = ContextBuilder()
    first = builder.build(_conversation(2), system_time="2026-01-01T10:00:00+00:00")
    second = builder.build(_conversation(2), system_time="2026-01-01T10:00:00+00:00")
    assert first == second
    assert "2026-01-01T10:00:00+00:00" in first[0].content


def test_window_inside_tool_batch_includes_requesting_message():
    history = [
        Message.user("is this safe?"),
        Message.assistant("", tool_calls=[ToolCall(id="call_1", name="product_info", arguments={})]),
        Message.tool('{"product": {}}', tool_call_id="call_1", name="product_info"),
        Message.assistant("Here is what I found."),
    ]
    recent = rolling_window(history, 2)
    assert [m.role for m in recent] == [Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert recent[0].tool_calls[0].id == "call_1"


def test_window_of_one_keeps_whole_tool_batch():
    history = [
        Message.user("compare these two"),
        Message.assistant("", tool_calls=[
            ToolCall(id="call_1", name="product_info", arguments={"search_query": "zinc"}),
            ToolCall(id="call_2", name="product_info", arguments={"search_query": "magnesium"}),
        ]),
        Message.tool('{"product": {"title": "Zinc"}}', tool_call_id="call_1", name="product_info"),
        Message.tool('{"product": {"title": "Magnesium"}}', tool_call_id="call_2", name="product_info"),
    ]
    recent = rolling_window(history, 1)
    assert [m.role for m in recent] == [Role.ASSISTANT, Role.TOOL, Role.TOOL]


def test_tool_result_without_request_in_history_is_dropped():
    history = [
        Message.tool('{"status": "forwarded"}', tool_call_id="call_0", name="handoff"),
        Message.assistant("Someone from our team will reply soon."),
    ]
    assert [m.role for m in rolling_window(history, 2)] == [Role.ASSISTANT]


def test_history_cap_keeps_newest():
    existing = _conversation(28)
    merged = append_messages(existing, _conversation(40)[28:], cap=30)
    assert len(merged) == 30
    assert merged[-1].content == "answer 39"
    assert len(existing) == 28


def test_append_drops_duplicate_across_boundary():
    existing = [Message.user("hello")]
    merged = append_messages(existing, [Message.user("hello"), Message.assistant("hi there")])
    assert [m.content for m in merged] == ["hello", "hi there"]


def test_with_options_overrides_only_given_fields():
    builder = ContextBuilder(chatbot_name="Soof", window_size=4)
    other = builder.with_options(window_size=2)
    assert other.window_size == 2
    assert other.chatbot_name == "Soof"
    assert builder.window_size == 4
