# agent/router.py
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from agent.context_builder import ContextBuilder
from agent.prompts import INTENT_CLASSIFICATION_PROMPT, PRODUCT_INFO_PROMPT, ROUTER_NOTES
from agent.schemas import Intent, IntentClassification, Message, Role

logger = logging.getLogger(__name__)

TRAILING_CONTEXT = 5


@dataclass(frozen=True)
class Handler:
    """A downstream handler: the tools bound to the Agent plus its task instructions."""
    name: str
    tools: Tuple[str, ...]
    task_prompt: Optional[str] = None


PRODUCT_INFO_HANDLER = Handler(
    name="product_info",
    tools=("product_info", "handoff"),
    task_prompt=PRODUCT_INFO_PROMPT,
)
GENERAL_CHAT_HANDLER = Handler(
    name="general_chat",
    tools=("product_info", "order_status", "handoff", "validate_claims"),
)

# Intents without a dedicated handler are served by general chat plus a router note
INTENT_HANDLERS = {
    Intent.PRODUCT_INFO: PRODUCT_INFO_HANDLER,
    Intent.RECOMMENDATION: GENERAL_CHAT_HANDLER,
    Intent.ORDER_LOOKUP: GENERAL_CHAT_HANDLER,
    Intent.HANDOFF: GENERAL_CHAT_HANDLER,
    Intent.GENERAL_CHAT: GENERAL_CHAT_HANDLER,
}
HANDLERS_BY_NAME = {h.name: h for h in (PRODUCT_INFO_HANDLER, GENERAL_CHAT_HANDLER)}


@dataclass
class Route:
    handler: Handler
    injected: List[Message] = field(default_factory=list)


def select_handler(classification: IntentClassification) -> Route:
    """Maps a classification to exactly one handler and the system messages it needs."""
    handler = INTENT_HANDLERS.get(classification.intent, GENERAL_CHAT_HANDLER)
    injected = []
    if handler.task_prompt:
        injected.append(Message.system(handler.task_prompt))

    note = ROUTER_NOTES.get(classification.intent.value)
    if note:
        injected.append(Message.system(note.format(reason=classification.reasoning)))
    return Route(handler=handler, injected=injected)


def routing_reason(classification: IntentClassification) -> str:
    return f"{classification.reasoning} (Confidence: {classification.confidence * 100:.1f}%)"


class IntentRouter:
    """
    classify() never raises: model errors, timeouts, schema mismatches and
    low-confidence answers all resolve to general_chat.
    `timeout` bounds the whole classification call; leave it unset for a model
    adapter that already bounds each model of its failover chain.
    """

    def __init__(self, model, confidence_floor: float = 0.4, timeout: Optional[float] = None,
                 context_builder: Optional[ContextBuilder] = None):
        self.model = model
        self.confidence_floor = confidence_floor
        self.timeout = timeout
        self.context_builder = context_builder or ContextBuilder()

    def build_messages(self, recent_messages: List[Message]) -> List[Message]:
        conversational = [m for m in recent_messages if m.role in (Role.USER, Role.ASSISTANT) and m.content]
        latest = conversational[-1] if conversational else recent_messages[-1]
        trailing = [m.content for m in conversational[-TRAILING_CONTEXT:]]

        prompt = INTENT_CLASSIFICATION_PROMPT.format(
            latest_message=latest.content,
            conversation_context=" → ".join(trailing),
        )
        # Only the latest message goes in as a turn; the trailing context lives in the prompt
        return self.context_builder.build([latest], [Message.system(prompt)], window_size=1)

    async def classify(self, recent_messages: List[Message]) -> IntentClassification:
        if not recent_messages:
            return IntentClassification.fallback()

        try:
            raw = await asyncio.wait_for(
                self.model.invoke_structured(self.build_messages(recent_messages), IntentClassification),
                timeout=self.timeout,
            )
            classification = IntentClassification.model_validate(
                raw.model_dump() if hasattr(raw, "model_dump") else raw
            )
        except Exception as e:
            logger.warning(f"[ROUTER] Intent classification error, falling back to general_chat: {e!r}")
            return IntentClassification.fallback()

        if classification.confidence < self.confidence_floor and classification.intent != Intent.GENERAL_CHAT:
            logger.warning(
                f"[ROUTER] Low confidence {classification.confidence:.2f} for "
                f"'{classification.intent.value}', falling back to general_chat"
            )
            return IntentClassification(
                intent=Intent.GENERAL_CHAT,
                confidence=classification.confidence,
                reasoning=f"fallback (low confidence {classification.intent.value}): {classification.reasoning}",
            )

        logger.info(f"[ROUTER] Intent '{classification.intent.value}' ({classification.confidence:.2f})")
        return classification
