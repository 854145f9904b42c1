"""
State Machine Nodes: each coroutine takes the TurnState and the runtime,
and returns a partial state update. Routing functions pick the next step.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Optional

from agent.context_builder import ContextBuilder
from agent.prompts import FALLBACK_REPLY
from agent.router import GENERAL_CHAT_HANDLER, HANDLERS_BY_NAME, IntentRouter, routing_reason, select_handler
from agent.schemas import ClaimsValidationResult, Message, Role
from agent.state import TurnState
from agent.tools import COMPLIANCE_TOOLS, ToolContext, execute_tool_call, schemas_for, serialize_result
from compliance.engine import classify_release
from compliance.evaluator import ComplianceEvaluator
from compliance.regeneration import RegenerationController

logger = logging.getLogger(__name__)


class Step(str, Enum):
    CLASSIFY = "classify"
    AGENT = "agent"
    TOOL_EXECUTION = "tool_execution"
    COMPLIANCE_CHECK = "compliance_check"
    REGENERATE = "regenerate"
    DONE = "done"


@dataclass
class TurnRuntime:
    """Collaborators shared by all nodes of a turn. Safe to share across turns."""
    model: object
    router: IntentRouter
    evaluator: ComplianceEvaluator
    controller: RegenerationController
    context_builder: ContextBuilder
    catalog: object = None
    order_service: object = None
    store: object = None


# ============================================================
# NODE: Classify (Intent Router)
# ============================================================
async def node_classify(state: TurnState, rt: TurnRuntime) -> dict:
    """Classifies the turn and picks the downstream handler. Never fails the turn."""
    classification = await rt.router.classify(state["messages"])
    route = select_handler(classification)
    return {
        "intent": classification.intent.value,
        "routing_reason": routing_reason(classification),
        "handler": route.handler.name,
        "injected": route.injected,
    }


# ============================================================
# NODE: Agent (draft or tool calls)
# ============================================================
async def node_agent(state: TurnState, rt: TurnRuntime) -> dict:
    """
    Calls the model with the handler's tools bound. Tool calls go to ToolExecution;
    otherwise the reply becomes the pending response. After max_tool_rounds the
    model is called without tools to force a final draft.
    """
    cfg = state["config"]
    handler = HANDLERS_BY_NAME.get(state["handler"], GENERAL_CHAT_HANDLER)
    allow_tools = state["tool_rounds"] < cfg.max_tool_rounds
    tools = schemas_for(handler.tools) if allow_tools else None

    context = rt.context_builder.build(
        state["messages"],
        state["injected"],
        window_size=cfg.context_window_size,
        system_time=state["turn_started_at"],
    )

    try:
        # The adapter bounds each model in its failover chain; no outer bound here
        draft = await rt.model.invoke(context, tools=tools)
    except Exception as e:
        logger.error(f"[AGENT] Model call failed, releasing fallback reply: {e!r}")
        return {"pending_response": Message.assistant(FALLBACK_REPLY), "tool_calls": []}

    if draft.tool_calls and allow_tools:
        logger.info(f"[AGENT] Requested tools: {[tc.name for tc in draft.tool_calls]}")
        return {"messages": [draft], "tool_calls": list(draft.tool_calls), "pending_response": None}

    if draft.tool_calls:
        logger.warning("[AGENT] Tool calls ignored after max_tool_rounds")
    return {"pending_response": Message.assistant(draft.content or FALLBACK_REPLY), "tool_calls": []}


# ============================================================
# NODE: Tool Executor (ReAct Pattern)
# ============================================================
async def node_tool_executor(state: TurnState, rt: TurnRuntime) -> dict:
    """
    Executes every pending tool call (concurrently; results keep request order)
    and appends the results as tool messages.
    """
    cfg = state["config"]
    tool_calls = state.get("tool_calls", [])
    ctx = ToolContext(
        shop_domain=cfg.shop_domain,
        session_token=cfg.session_token,
        model=rt.model,
        evaluator=rt.evaluator,
        catalog=rt.catalog,
        order_service=rt.order_service,
        threshold=cfg.claims_validation_threshold,
        timeout=cfg.request_timeout,
        recent_messages=[m for m in state["messages"] if m.role in (Role.USER, Role.ASSISTANT) and m.content],
    )

    results = await asyncio.gather(*(execute_tool_call(tc.name, tc.arguments, ctx) for tc in tool_calls))

    new_messages = [
        Message.tool(serialize_result(result), tool_call_id=tc.id, name=tc.name)
        for tc, result in zip(tool_calls, results)
    ]
    used_compliance_tool = any(tc.name in COMPLIANCE_TOOLS for tc in tool_calls)

    return {
        "messages": new_messages,
        "tool_calls": [],  # Clear pending tool calls
        "tool_rounds": state["tool_rounds"] + 1,
        "needs_compliance": state["needs_compliance"] or used_compliance_tool,
    }


# ============================================================
# NODE: Compliance Check
# ============================================================
async def node_compliance_check(state: TurnState, rt: TurnRuntime) -> dict:
    """Evaluates the pending draft against the claim index."""
    cfg = state["config"]
    draft = state["pending_response"]

    try:
        validation = await asyncio.wait_for(
            rt.evaluator.evaluate(draft.content, cfg.claims_validation_threshold),
            timeout=cfg.request_timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("[COMPLIANCE] Evaluation timed out; compliance skipped (degraded mode)")
        validation = ClaimsValidationResult.vacuous(degraded=True)

    update = {"claims_validation": validation, "original_response": draft.content}
    if validation.is_compliant and not cfg.uniform_passthrough:
        update["needs_compliance"] = False
    return update


# ============================================================
# NODE: Regenerate
# ============================================================
async def node_regenerate(state: TurnState, rt: TurnRuntime) -> dict:
    """Runs the bounded rewrite loop (or the single pass-through copy) on the pending draft."""
    cfg = state["config"]
    draft = state["pending_response"]
    evaluate = partial(rt.evaluator.evaluate, threshold=cfg.claims_validation_threshold)

    outcome = await rt.controller.enforce(
        draft.content,
        state["user_query"],
        evaluate,
        max_attempts=cfg.max_regeneration_attempts,
        validation=state["claims_validation"],
        passthrough=cfg.uniform_passthrough,
    )
    return {
        "pending_response": Message.assistant(outcome.final_text),
        "claims_validation": outcome.last_validation,
        "regeneration_attempts": outcome.attempts,
        "needs_compliance": False,
    }


# ============================================================
# NODE: Done (release)
# ============================================================
def release_message(state: TurnState, draft: Optional[Message] = None) -> Message:
    draft = draft or state.get("pending_response") or Message.assistant(FALLBACK_REPLY)
    validation = state.get("claims_validation")
    if validation is None and state.get("needs_compliance") and state.get("pending_response") is not None:
        # The gate was required but never reached (node failure or step limit)
        validation = ClaimsValidationResult.vacuous(degraded=True)
    release = classify_release(
        validation,
        attempts=state.get("regeneration_attempts", 0),
        compliance_required=validation is not None,
    )
    return Message(
        role=Role.ASSISTANT,
        content=draft.content,
        claims_validation=validation,
        original_response=state.get("original_response") if validation is not None else None,
        release=release,
    )


async def node_done(state: TurnState, rt: TurnRuntime) -> dict:
    """Appends exactly one assistant message carrying the audit record."""
    final = release_message(state)
    return {
        "messages": [final],
        "final_response": final,
        "release": final.release,
        "pending_response": None,
    }


# ============================================================
# ROUTING FUNCTIONS
# ============================================================
def route_after_classify(state: TurnState) -> Step:
    return Step.AGENT


def route_after_agent(state: TurnState) -> Step:
    """Tool calls → ToolExecution; draft → ComplianceCheck when required, else Done."""
    if state.get("tool_calls"):
        return Step.TOOL_EXECUTION
    if state.get("needs_compliance"):
        return Step.COMPLIANCE_CHECK
    return Step.DONE


def route_after_tools(state: TurnState) -> Step:
    return Step.AGENT


def route_after_compliance(state: TurnState) -> Step:
    validation = state.get("claims_validation")
    if validation is None:
        return Step.DONE
    if not validation.is_compliant:
        return Step.REGENERATE
    if state["config"].uniform_passthrough and not validation.degraded:
        return Step.REGENERATE
    return Step.DONE


def route_after_regenerate(state: TurnState) -> Step:
    return Step.DONE
