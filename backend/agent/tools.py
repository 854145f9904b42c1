"""
Agent Tools: External tools the LLM can invoke during a turn.
Implements the ReAct (Reasoning + Acting) pattern: every result, including
failures, goes back to the model as a structured payload.
"""
import json
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from agent.context_builder import ContextBuilder
from agent.prompts import HANDOFF_REPLY, SEARCH_QUERY_PROMPT
from agent.schemas import Message, SearchQuery

logger = logging.getLogger(__name__)


class ToolConfigurationError(RuntimeError):
    """Required routing context for a tool is missing."""


@dataclass
class ToolContext:
    """Per-turn collaborators and routing context handed to every tool."""
    shop_domain: Optional[str] = None
    session_token: Optional[str] = None
    model: object = None
    evaluator: object = None
    catalog: object = None
    order_service: object = None
    threshold: float = 0.75
    timeout: float = 30.0
    recent_messages: List[Message] = field(default_factory=list)


# --- Tool Registry ---
TOOL_REGISTRY = {}

# Tools whose output carries product claims and must pass the compliance gate
COMPLIANCE_TOOLS = {"product_info"}


def register_tool(func):
    """Decorator to register a coroutine as an available tool."""
    TOOL_REGISTRY[func.__name__] = func
    return func


# ============================================================
# TOOL: product_info
# ============================================================
async def generate_search_from_history(ctx: ToolContext) -> SearchQuery:
    """Structured search query from the last 3 messages; falls back to the last message text."""
    recent = ctx.recent_messages[-3:]
    if not recent:
        raise ToolConfigurationError("No messages available to derive a product search from.")

    try:
        builder = ContextBuilder(window_size=3)
        messages = builder.build(recent, [Message.system(SEARCH_QUERY_PROMPT)])
        result = await ctx.model.invoke_structured(messages, SearchQuery)
        if not result.search_query.strip():
            raise ValueError("Generated search query is empty")
        return result
    except Exception as e:
        logger.warning(f"Using fallback search query due to LLM error: {e!r}")
        fallback = recent[-1].content.strip()
        if not fallback:
            raise ToolConfigurationError("Cannot generate search query: no valid content found in messages") from e
        return SearchQuery(
            search_query=fallback,
            context="General product search - LLM analysis failed, using fallback",
        )


def map_product(product: dict) -> dict:
    """Keeps the fields the model needs; raw catalog metadata never goes back into the context."""
    variants = product.get("variants") if isinstance(product.get("variants"), list) else []
    return {
        "title": product.get("title"),
        "description": product.get("description"),
        "product_type": product.get("product_type"),
        "price_range": product.get("price_range"),
        "variants": [
            {
                "title": v.get("title"),
                "price": v.get("price"),
                "currency": v.get("currency"),
                "available": v.get("available"),
            }
            for v in variants
        ],
    }


@register_tool
async def product_info(ctx: ToolContext, search_query: str = "", context: str = "") -> dict:
    """
    Search the store catalog and return the best matching product.

    Args:
        search_query: The product search query.
        context: Additional context about what the user is requesting.
    """
    if not ctx.shop_domain:
        raise ToolConfigurationError("Shopify domain (shop_domain) is required")
    if ctx.catalog is None:
        raise ToolConfigurationError("Product catalog client is not configured")

    if not search_query.strip():
        extracted = await generate_search_from_history(ctx)
        search_query, context = extracted.search_query, context or extracted.context

    result = await ctx.catalog.search(search_query, ctx.shop_domain, context=context)
    if not result.get("success"):
        return {"error": "Error fetching product info.", "details": result.get("error", "Unknown error")}

    products = result.get("products") or []
    if not products:
        return {"error": "No products found.", "query": search_query}

    return {
        "product": map_product(products[0]),
        "instructions": "Create a small and concise description about this product.",
    }


# ============================================================
# TOOL: order_status
# ============================================================
@register_tool
async def order_status(ctx: ToolContext, order_id: Optional[str] = None, email: Optional[str] = None) -> dict:
    """
    Fetch fulfillment, delivery and payment status for an order ID or customer email.
    """
    if not order_id and not email:
        return {"error": "Either order_id or email must be provided."}
    if not ctx.session_token:
        raise ToolConfigurationError("No session token found in routing context")
    if ctx.order_service is None:
        raise ToolConfigurationError("Order lookup service is not configured")

    return await ctx.order_service.lookup(session_token=ctx.session_token, order_id=order_id, email=email)


# ============================================================
# TOOL: handoff
# ============================================================
@register_tool
async def handoff(ctx: ToolContext, transcript: str = "") -> dict:
    """Forward the chat to the human support team."""
    logger.info(f"[HANDOFF] Forwarding chat to support ({len(transcript)} chars of transcript)")
    return {"status": "forwarded", "message": HANDOFF_REPLY}


# ============================================================
# TOOL: validate_claims
# ============================================================
@register_tool
async def validate_claims(ctx: ToolContext, text: str, threshold: Optional[float] = None) -> dict:
    """Check a draft answer for forbidden or allowed health/nutrition claims."""
    if ctx.evaluator is None:
        raise ToolConfigurationError("Compliance evaluator is not configured")
    result = await ctx.evaluator.evaluate(text, ctx.threshold if threshold is None else threshold)
    return result.model_dump()


# ============================================================
# Tool Schemas for LLM Binding
# ============================================================
TOOL_SCHEMAS = {
    "product_info": {
        "type": "function",
        "function": {
            "name": "product_info",
            "description": (
                "Fetch product information from the store catalog based on a search query and context. "
                "ALWAYS use this tool before describing a product, its ingredients, safety or health effects."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "search_query": {"type": "string", "description": "The product search query."},
                    "context": {
                        "type": "string",
                        "description": "Additional context about what the user is requesting.",
                    },
                },
                "required": ["search_query"],
            },
        },
    },
    "order_status": {
        "type": "function",
        "function": {
            "name": "order_status",
            "description": (
                "Fetch order fulfillment, delivery, and payment status for a given order ID or customer email. "
                "Either order_id or email must be provided."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "order_id": {"type": "string", "description": "The order ID to look up."},
                    "email": {"type": "string", "description": "The customer's email address."},
                },
            },
        },
    },
    "handoff": {
        "type": "function",
        "function": {
            "name": "handoff",
            "description": "Forward the chat to the human support team.",
            "parameters": {
                "type": "object",
                "properties": {
                    "transcript": {"type": "string", "description": "Short summary of the conversation."},
                },
            },
        },
    },
    "validate_claims": {
        "type": "function",
        "function": {
            "name": "validate_claims",
            "description": (
                "Validate whether the provided text contains forbidden or allowed health/nutrition claims. "
                "Returns compliance information so that you can decide to rewrite your answer."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "text": {"type": "string", "description": "Full answer text to validate."},
                    "threshold": {"type": "number", "description": "Similarity threshold between 0 and 1."},
                },
                "required": ["text"],
            },
        },
    },
}


def schemas_for(tool_names) -> list:
    return [TOOL_SCHEMAS[name] for name in tool_names if name in TOOL_SCHEMAS]


async def execute_tool_call(tool_name: str, arguments: dict, ctx: ToolContext) -> dict:
    """
    Dispatches a tool call to the registered coroutine.
    Never raises: failures come back as {"error": ..., "details": ...}.
    """
    func = TOOL_REGISTRY.get(tool_name)
    if not func:
        return {"error": f"Unknown tool '{tool_name}'"}

    try:
        return await asyncio.wait_for(func(ctx, **(arguments or {})), timeout=ctx.timeout)
    except ToolConfigurationError as e:
        logger.error(f"[TOOL] Configuration error in '{tool_name}': {e}")
        return {"error": "Configuration error", "details": str(e)}
    except asyncio.TimeoutError:
        logger.error(f"[TOOL] '{tool_name}' timed out after {ctx.timeout}s")
        return {"error": f"Tool '{tool_name}' timed out."}
    except Exception as e:
        logger.error(f"[TOOL] Error executing '{tool_name}': {e!r}")
        return {"error": f"Error executing tool '{tool_name}'", "details": str(e)}


def serialize_result(result: dict) -> str:
    return json.dumps(result, ensure_ascii=False, default=str)
