"""
Turn State Machine: explicit node/edge executor for one conversation turn.

    classify → agent ⇄ tool_execution
               agent → compliance_check → regenerate → done
               agent → done
"""
import json
import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from agent.nodes import (
    Step,
    TurnRuntime,
    node_classify,
    node_agent,
    node_tool_executor,
    node_compliance_check,
    node_regenerate,
    node_done,
    release_message,
    route_after_classify,
    route_after_agent,
    route_after_tools,
    route_after_compliance,
    route_after_regenerate,
)
from agent.schemas import Message, RoutingConfig
from agent.state import TurnState, apply_update, initial_state

logger = logging.getLogger(__name__)

MAX_STEPS = 25

NODES = {
    Step.CLASSIFY: node_classify,
    Step.AGENT: node_agent,
    Step.TOOL_EXECUTION: node_tool_executor,
    Step.COMPLIANCE_CHECK: node_compliance_check,
    Step.REGENERATE: node_regenerate,
    Step.DONE: node_done,
}

ROUTES = {
    Step.CLASSIFY: route_after_classify,
    Step.AGENT: route_after_agent,
    Step.TOOL_EXECUTION: route_after_tools,
    Step.COMPLIANCE_CHECK: route_after_compliance,
    Step.REGENERATE: route_after_regenerate,
}

# --- Human-readable node labels for streamed events ---
NODE_LABELS = {
    Step.CLASSIFY: "Classifying your question...",
    Step.AGENT: "Drafting a response...",
    Step.TOOL_EXECUTION: "Looking things up...",
    Step.COMPLIANCE_CHECK: "Checking health claims...",
    Step.REGENERATE: "Rewriting for compliance...",
    Step.DONE: "Done.",
}


def _finalize_after_failure(state: TurnState) -> TurnState:
    final = release_message(state)
    return apply_update(state, {
        "messages": [final],
        "final_response": final,
        "release": final.release,
        "pending_response": None,
    })


async def run_turn(state: TurnState, runtime: TurnRuntime,
                   on_step: Optional[Callable[[Step, TurnState], None]] = None) -> TurnState:
    """
    Drives the machine from CLASSIFY to DONE. Every failure degrades to a
    best-effort DONE, so the returned state always holds a final_response.
    """
    step = Step.CLASSIFY
    for _ in range(MAX_STEPS):
        try:
            update = await NODES[step](state, runtime)
        except Exception as e:
            logger.exception(f"[GRAPH] Node '{step.value}' failed: {e!r}")
            if step == Step.DONE:
                return _finalize_after_failure(state)
            step = Step.DONE
            continue

        state = apply_update(state, update)
        logger.debug(f"[GRAPH] Completed node '{step.value}'")
        if on_step:
            on_step(step, state)

        if step == Step.DONE:
            return state
        step = ROUTES[step](state)

    logger.error(f"[GRAPH] Step limit ({MAX_STEPS}) reached; releasing best-effort reply")
    return _finalize_after_failure(state)


async def process_turn(thread_id: str, new_user_message: str,
                       routing_config: Optional[RoutingConfig] = None,
                       runtime: Optional[TurnRuntime] = None) -> Message:
    """
    Public entry point: loads the thread, runs one turn, persists the user message
    and the released assistant message, and returns the latter.
    """
    runtime = runtime or get_runtime()
    config = routing_config or RoutingConfig()

    history = await runtime.store.load(thread_id) if runtime.store else []
    state = initial_state(thread_id, history, new_user_message, config)
    state = await run_turn(state, runtime)

    final = state["final_response"]
    if runtime.store:
        await runtime.store.append(thread_id, [Message.user(new_user_message), final])
    return final


async def stream_turn(thread_id: str, new_user_message: str,
                      routing_config: Optional[RoutingConfig] = None,
                      runtime: Optional[TurnRuntime] = None) -> AsyncIterator[str]:
    """
    Async generator yielding one JSON event per node transition, then the result.
    Yields: JSON string per node transition + final message, then "[DONE]".
    """
    runtime = runtime or get_runtime()
    config = routing_config or RoutingConfig()
    queue: asyncio.Queue = asyncio.Queue()

    def collect(step: Step, state: TurnState):
        queue.put_nowait(json.dumps({
            "event": "node",
            "node": step.value,
            "label": NODE_LABELS.get(step, f"Processing {step.value}..."),
            "intent": state.get("intent"),
            "regeneration_attempts": state.get("regeneration_attempts", 0),
        }))

    history = await runtime.store.load(thread_id) if runtime.store else []
    state = initial_state(thread_id, history, new_user_message, config)

    async def _run():
        try:
            return await run_turn(state, runtime, on_step=collect)
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(_run())
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield event
    finally:
        # A consumer that stops early abandons the turn; nothing is persisted
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info(f"[GRAPH] Stream for thread {thread_id} closed early; turn cancelled")

    final = (await task)["final_response"]
    if runtime.store:
        await runtime.store.append(thread_id, [Message.user(new_user_message), final])
    yield json.dumps({"event": "result", "data": final.model_dump(mode="json")})
    yield "[DONE]"


# --- Lazy default runtime (initialized on first use) ---
_runtime_cache = {}


def build_default_runtime(config: Optional[RoutingConfig] = None) -> TurnRuntime:
    """Wires the production collaborators from environment configuration."""
    from agent import config as settings
    from agent.catalog import ShopifyCatalogClient
    from agent.context_builder import ContextBuilder
    from agent.llm_client import ModelAdapter
    from agent.router import IntentRouter
    from agent.store import ThreadStore
    from compliance.evaluator import ComplianceEvaluator
    from compliance.regeneration import RegenerationController
    from retrieval.claims_index import load_claim_index

    settings.configure_logging()
    config = config or settings.ensure_configuration()

    context_builder = ContextBuilder(
        chatbot_name=settings.CHATBOT_NAME,
        shop_name=settings.SHOP_NAME,
        product_category=settings.PRODUCT_CATEGORY,
        window_size=config.context_window_size,
    )
    model = ModelAdapter(timeout=config.request_timeout)
    retriever = load_claim_index(settings.CLAIMS_INDEX_DIR, settings.CLAIMS_EMBEDDING_MODEL)

    return TurnRuntime(
        model=model,
        router=IntentRouter(model, confidence_floor=config.intent_confidence_floor,
                            context_builder=context_builder),
        evaluator=ComplianceEvaluator(retriever, top_k=config.claims_top_k, timeout=config.request_timeout),
        controller=RegenerationController(model),
        context_builder=context_builder,
        catalog=ShopifyCatalogClient(),
        store=ThreadStore(settings.THREAD_DB_PATH, history_cap=config.history_cap),
    )


def get_runtime() -> TurnRuntime:
    if "default" not in _runtime_cache:
        _runtime_cache["default"] = build_default_runtime()
    return _runtime_cache["default"]
