"""
Regeneration Controller: bounded rewrite loop for non-compliant drafts.

    Draft -> Evaluate -> Compliant: Done
                      -> NonCompliant, attempts < max: Rewrite -> Evaluate
                      -> NonCompliant, attempts == max: Done (last draft, flagged)
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from agent.prompts import CLAIMS_COMPLIANT_PROMPT, PASSTHROUGH_PROMPT
from agent.schemas import ClaimsValidationResult, Message

logger = logging.getLogger(__name__)

Evaluate = Callable[[str], Awaitable[ClaimsValidationResult]]


@dataclass
class RegenerationOutcome:
    final_text: str
    last_validation: ClaimsValidationResult
    attempts: int
    original_text: str


def _join(items) -> str:
    return ", ".join(items) if items else "none"


def build_rewrite_messages(original_query: str, draft: str, validation: ClaimsValidationResult) -> list:
    prompt = CLAIMS_COMPLIANT_PROMPT.format(
        original_query=original_query,
        previous_response=draft,
        violated_claims=_join(validation.violated_claims),
        allowed_claims=_join(validation.allowed_claims),
        suggestions=_join(validation.suggestions),
    )
    return [Message.system(prompt), Message.user(original_query)]


class RegenerationController:
    """`model` needs an async invoke(messages) -> Message."""

    def __init__(self, model):
        self.model = model

    async def _rewrite(self, messages: list) -> Optional[str]:
        try:
            reply = await self.model.invoke(messages)
        except Exception as e:
            logger.error(f"[REGEN] Rewrite call failed: {e!r}")
            return None
        text = (reply.content or "").strip()
        return text or None

    async def enforce(self, candidate_text: str, original_query: str, evaluate: Evaluate,
                      max_attempts: int = 3, validation: Optional[ClaimsValidationResult] = None,
                      passthrough: bool = False) -> RegenerationOutcome:
        """
        Returns the released text with its last validation. Never raises on exhaustion:
        after `max_attempts` rewrite calls the last draft is returned flagged non-compliant.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        draft = candidate_text
        if validation is None:
            validation = await evaluate(draft)

        if validation.is_compliant:
            if passthrough:
                return await self._passthrough(draft, validation, evaluate)
            return RegenerationOutcome(draft, validation, 0, candidate_text)

        attempts = 0
        while not validation.is_compliant and attempts < max_attempts:
            attempts += 1
            logger.info(
                f"[REGEN] Attempt {attempts}/{max_attempts}: "
                f"{len(validation.violated_claims)} forbidden claim(s) to remove"
            )
            rewritten = await self._rewrite(build_rewrite_messages(original_query, draft, validation))
            if rewritten is None:
                # Failed call still consumes the attempt; draft and verdict carry forward
                continue
            draft = rewritten
            validation = await evaluate(draft)

        if not validation.is_compliant:
            logger.warning(
                f"[REGEN] Exhausted {max_attempts} attempt(s); releasing last draft flagged non-compliant"
            )
        return RegenerationOutcome(draft, validation, attempts, candidate_text)

    async def _passthrough(self, draft: str, validation: ClaimsValidationResult,
                           evaluate: Evaluate) -> RegenerationOutcome:
        """Single unchanged-copy pass so compliant and rewritten replies leave through the same call."""
        echoed = await self._rewrite([Message.system(PASSTHROUGH_PROMPT.format(response=draft))])
        if echoed is None or echoed == draft:
            return RegenerationOutcome(draft, validation, 0, draft)

        echoed_validation = await evaluate(echoed)
        if not echoed_validation.is_compliant:
            logger.warning("[REGEN] Pass-through altered a compliant draft into a non-compliant one; keeping original")
            return RegenerationOutcome(draft, validation, 0, draft)
        return RegenerationOutcome(echoed, echoed_validation, 0, draft)
