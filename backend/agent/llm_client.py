"""
LLM Client: provider initialization, failover API call logic, and the model adapter
the turn processor talks to.
"""
import os
import json
import asyncio
import logging
from typing import List, Optional, Type

import instructor
from instructor.core import InstructorRetryException
from groq import AsyncGroq
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError
from dotenv import load_dotenv

from agent.schemas import Message, Role, ToolCall

load_dotenv()

logger = logging.getLogger(__name__)


class ModelSchemaError(RuntimeError):
    """Structured output did not match the requested schema."""


class ModelOutageError(RuntimeError):
    """Every configured model failed."""


def get_llm_client():
    """
    Initializes and returns the LLM client configuration.
    Returns: (base_client, instructor_client, models, provider_name)
    """
    groq_key = os.getenv("GROQ_API_KEY")
    openrouter_key = os.getenv("OPENROUTER_API_KEY")
    google_key = os.getenv("GOOGLE_API_KEY")
    openai_key = os.getenv("OPENAI_API_KEY")

    if groq_key:
        logger.info("Using Groq Provider")
        models = [
            "llama-3.3-70b-versatile",
            "llama-3.1-8b-instant",
        ]
        base_client = AsyncGroq(api_key=groq_key)
        client = instructor.from_groq(base_client, mode=instructor.Mode.TOOLS)
        return base_client, client, models, "groq"

    elif openrouter_key:
        logger.info("Using OpenRouter Provider")
        models = [
            "openai/gpt-4o-mini",
            "meta-llama/llama-3.3-70b-instruct",
            "google/gemini-2.0-flash-001",
        ]
        base_client = AsyncOpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=openrouter_key,
        )
        client = instructor.from_openai(base_client, mode=instructor.Mode.JSON)
        return base_client, client, models, "openrouter"

    elif google_key:
        logger.info("Using Google Gemini Provider")
        models = [
            "gemini-2.0-flash",
            "gemini-1.5-flash",
        ]
        base_client = AsyncOpenAI(
            base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
            api_key=google_key,
        )
        client = instructor.from_openai(base_client, mode=instructor.Mode.JSON)
        return base_client, client, models, "google"

    elif openai_key:
        logger.info("Using OpenAI Provider")
        models = ["gpt-4o-mini"]
        base_client = AsyncOpenAI(api_key=openai_key)
        client = instructor.from_openai(base_client, mode=instructor.Mode.TOOLS)
        return base_client, client, models, "openai"

    else:
        raise ValueError(
            "No API Key found. Set GROQ_API_KEY, OPENROUTER_API_KEY, GOOGLE_API_KEY, or OPENAI_API_KEY."
        )


async def safe_api_call(base_client, instructor_client, models, messages,
                        temperature=0, response_model=None, tools=None, timeout=30.0):
    """
    Failover loop: tries every model in sequence, each bounded by `timeout`.
    Returns the raw completion (or the parsed response_model) or raises ModelOutageError.
    """
    errors = []

    for model in models:
        try:
            masked_model = model[:30]
            logger.info(f"Trying Model: {masked_model}")

            if response_model:
                call = instructor_client.chat.completions.create(
                    messages=messages,
                    model=model,
                    temperature=temperature,
                    response_model=response_model,
                    max_retries=1,
                )
            else:
                kwargs = {"tools": tools} if tools else {}
                call = base_client.chat.completions.create(
                    messages=messages,
                    model=model,
                    temperature=temperature,
                    **kwargs,
                )

            response = await asyncio.wait_for(call, timeout=timeout)
            logger.info(f"[OK] Success with {masked_model}")
            return response

        except (ValidationError, InstructorRetryException) as e:
            logger.critical(f"[ABORT] SCHEMA MISMATCH: {e}")
            raise ModelSchemaError(f"Schema Validation Error: {e}") from e

        except Exception as e:
            error_msg = str(e).lower()
            # No retry will fix a schema mismatch
            if "tool call validation failed" in error_msg or "validation error" in error_msg:
                logger.critical(f"[ABORT] SCHEMA MISMATCH: {error_msg}")
                raise ModelSchemaError(f"Schema Validation Error: {error_msg}") from e

            logger.error(f"[ERR] Error on {model}: {e!r}")
            errors.append(f"{model}: {e!r}")
            continue

    raise ModelOutageError(
        f"[OUTAGE] SERVICE OUTAGE: All {len(models)} models exhausted. Errors: {errors[:3]}"
    )


def to_api_message(msg: Message) -> dict:
    """Message -> OpenAI-compatible chat message dict."""
    payload = {"role": msg.role.value, "content": msg.content}
    if msg.role == Role.ASSISTANT and msg.tool_calls:
        payload["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
            }
            for tc in msg.tool_calls
        ]
    if msg.role == Role.TOOL:
        payload["tool_call_id"] = msg.tool_call_id
        if msg.name:
            payload["name"] = msg.name
    return payload


def _parse_tool_calls(raw_calls) -> List[ToolCall]:
    calls = []
    for raw in raw_calls or []:
        try:
            arguments = json.loads(raw.function.arguments or "{}")
        except json.JSONDecodeError:
            logger.error(f"Unparseable arguments for tool '{raw.function.name}': {raw.function.arguments!r}")
            arguments = {}
        calls.append(ToolCall(id=raw.id, name=raw.function.name, arguments=arguments))
    return calls


class ModelAdapter:
    """
    invoke(messages, tools) -> Message ; invoke_structured(messages, schema) -> schema instance.
    Clients are initialised lazily on first use.
    """

    def __init__(self, base_client=None, instructor_client=None, models: Optional[List[str]] = None,
                 temperature: float = 0, timeout: float = 30.0):
        self._base = base_client
        self._instructor = instructor_client
        self._models = models
        self.temperature = temperature
        self.timeout = timeout

    def _clients(self):
        if self._base is None:
            self._base, self._instructor, self._models, provider = get_llm_client()
            logger.info(f"Model adapter bound to provider '{provider}'")
        return self._base, self._instructor, self._models

    async def invoke(self, messages: List[Message], tools: Optional[list] = None,
                     temperature: Optional[float] = None) -> Message:
        base, instr, models = self._clients()
        response = await safe_api_call(
            base, instr, models,
            [to_api_message(m) for m in messages],
            temperature=self.temperature if temperature is None else temperature,
            tools=tools,
            timeout=self.timeout,
        )
        choice = response.choices[0].message
        return Message.assistant(choice.content or "", _parse_tool_calls(choice.tool_calls))

    async def invoke_structured(self, messages: List[Message], response_model: Type[BaseModel]):
        base, instr, models = self._clients()
        return await safe_api_call(
            base, instr, models,
            [to_api_message(m) for m in messages],
            temperature=0,
            response_model=response_model,
            timeout=self.timeout,
        )
