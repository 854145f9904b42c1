# agent/context_builder.py
from typing import Iterable, List, Optional

from agent.prompts import BASE_CHAT_SYSTEM_PROMPT, SYSTEM_TIME_SUFFIX
from agent.schemas import Message, Role

HISTORY_CAP = 30


def dedupe_consecutive(messages: Iterable[Message]) -> List[Message]:
    """Drops a message when it repeats the previous one (same role, content and tool call id)."""
    result: List[Message] = []
    for msg in messages:
        if result and result[-1].dedup_key == msg.dedup_key:
            continue
        result.append(msg)
    return result


def append_messages(existing: List[Message], new: Iterable[Message], cap: int = HISTORY_CAP) -> List[Message]:
    """
    Reducer for the conversation log: append, dedupe, then keep the newest `cap` entries.
    Never mutates `existing`.
    """
    merged = dedupe_consecutive(list(existing) + list(new))
    if cap <= 0:
        return []
    return merged[-cap:]


def rolling_window(messages: List[Message], window_size: int) -> List[Message]:
    if window_size <= 0:
        return []
    start = max(len(messages) - window_size, 0)

    # A window opening inside a tool batch is widened to the assistant message that requested it
    owner = start
    while owner > 0 and messages[owner].role == Role.TOOL:
        owner -= 1
    if owner < start and messages[owner].role == Role.ASSISTANT and messages[owner].tool_calls:
        start = owner

    recent = messages[start:]
    # Results with no requesting message left in history cannot be sent alone
    while recent and recent[0].role == Role.TOOL:
        recent = recent[1:]
    return recent


class ContextBuilder:
    """
    Assembles the ordered message list for a model call:
      1. base system prompt (if enabled)
      2. task-specific system messages
      3. rolling window over the deduplicated history
    Pure: same inputs, same output.
    """

    def __init__(self, chatbot_name: str = "Soof", shop_name: str = "Test Shop",
                 product_category: str = "nutritional supplements", window_size: int = 10,
                 base_system_prompt: bool = True):
        self.chatbot_name = chatbot_name
        self.shop_name = shop_name
        self.product_category = product_category
        self.window_size = window_size
        self.base_system_prompt = base_system_prompt

    def base_system_message(self, system_time: Optional[str] = None) -> Message:
        prompt = BASE_CHAT_SYSTEM_PROMPT.format(
            chatbot_name=self.chatbot_name,
            shop_name=self.shop_name,
            product_category=self.product_category,
        )
        if system_time:
            prompt += SYSTEM_TIME_SUFFIX.format(system_time=system_time)
        return Message.system(prompt)

    def build(self, history: List[Message], injected: Optional[List[Message]] = None,
              window_size: Optional[int] = None, system_time: Optional[str] = None) -> List[Message]:
        window = self.window_size if window_size is None else window_size
        recent = rolling_window(dedupe_consecutive(history), window)

        context: List[Message] = []
        if self.base_system_prompt:
            context.append(self.base_system_message(system_time))
        context.extend(injected or [])
        context.extend(recent)
        return context

    def with_options(self, **overrides) -> "ContextBuilder":
        params = {
            "chatbot_name": self.chatbot_name,
            "shop_name": self.shop_name,
            "product_category": self.product_category,
            "window_size": self.window_size,
            "base_system_prompt": self.base_system_prompt,
        }
        params.update(overrides)
        return ContextBuilder(**params)


def build_context(full_history: List[Message], injected_system_messages: List[Message],
                  window_size: int, builder: Optional[ContextBuilder] = None) -> List[Message]:
    """Functional entry point over a default-configured builder."""
    builder = builder or ContextBuilder()
    return builder.build(full_history, injected_system_messages, window_size=window_size)
