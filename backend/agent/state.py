"""
Turn State: the TypedDict passed between the state machine's nodes.
Nodes return partial updates; `messages` updates go through the append reducer.
"""
from datetime import datetime, timezone
from typing import TypedDict, Optional, List

from agent.context_builder import append_messages
from agent.schemas import Message, RoutingConfig, ClaimsValidationResult, ToolCall
from compliance.decision import ReleaseDecision


class TurnState(TypedDict):
    # --- Conversation ---
    thread_id: str
    messages: List[Message]                           # Append-only log (dedup + cap reducer)
    user_query: str                                   # Latest user message text
    turn_started_at: str                              # ISO timestamp, rendered into the base prompt
    config: RoutingConfig

    # --- Routing ---
    intent: str                                       # IntentClassification.intent value
    routing_reason: str
    handler: str                                      # Handler name chosen by the router
    injected: List[Message]                           # Handler/router system messages for the Agent

    # --- Generation ---
    pending_response: Optional[Message]               # Draft awaiting release (at most one)
    tool_calls: List[ToolCall]                        # Pending tool call requests
    tool_rounds: int

    # --- Compliance ---
    needs_compliance: bool                            # Set by tool execution; cleared only by compliance nodes
    claims_validation: Optional[ClaimsValidationResult]
    original_response: Optional[str]                  # Pre-rewrite text
    regeneration_attempts: int

    # --- Output ---
    release: Optional[ReleaseDecision]
    final_response: Optional[Message]


def initial_state(thread_id: str, history: List[Message], user_message: str,
                  config: RoutingConfig, started_at: Optional[str] = None) -> TurnState:
    user = Message.user(user_message)
    return {
        "thread_id": thread_id,
        "messages": append_messages(history, [user], config.history_cap),
        "user_query": user_message,
        "turn_started_at": started_at or datetime.now(timezone.utc).isoformat(),
        "config": config,
        "intent": "general_chat",
        "routing_reason": "",
        "handler": "general_chat",
        "injected": [],
        "pending_response": None,
        "tool_calls": [],
        "tool_rounds": 0,
        "needs_compliance": False,
        "claims_validation": None,
        "original_response": None,
        "regeneration_attempts": 0,
        "release": None,
        "final_response": None,
    }


def apply_update(state: TurnState, update: dict) -> TurnState:
    """Merges a node's partial update. Returns a new dict; the input state is left untouched."""
    merged = dict(state)
    for key, value in update.items():
        if key == "messages":
            merged["messages"] = append_messages(state["messages"], value, state["config"].history_cap)
        else:
            merged[key] = value
    return merged
