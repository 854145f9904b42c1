"""
Compliance Evaluator: turns retrieved claim matches into a pass/fail verdict.
"""
import asyncio
import logging
from typing import Optional

from agent.prompts import COMPLIANCE_SUGGESTIONS
from agent.schemas import ClaimsValidationResult, ClaimType
from retrieval.base import ClaimRetriever, RetrievalUnavailable

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.75
DEFAULT_TOP_K = 25


class ComplianceEvaluator:
    def __init__(self, retriever: Optional[ClaimRetriever], top_k: int = DEFAULT_TOP_K,
                 timeout: Optional[float] = 30.0):
        self.retriever = retriever
        self.top_k = top_k
        self.timeout = timeout

    async def evaluate(self, candidate_text: str, threshold: float = DEFAULT_THRESHOLD) -> ClaimsValidationResult:
        """
        1. fetch the top-K nearest claim records
        2. keep records scoring >= threshold
        3. forbidden = violations, allowed = sanctioned evidence, general = ignored for the verdict
        4. score = (retained - forbidden) / retained, or 1.0 with nothing retained
        """
        if not candidate_text or not candidate_text.strip():
            return ClaimsValidationResult.vacuous()

        if self.retriever is None:
            logger.warning("[COMPLIANCE] No claim retriever configured; compliance skipped (degraded mode).")
            return ClaimsValidationResult.vacuous(degraded=True)

        try:
            records = await asyncio.wait_for(
                self.retriever.query(candidate_text, self.top_k), timeout=self.timeout
            )
        except (RetrievalUnavailable, asyncio.TimeoutError) as e:
            logger.warning(f"[COMPLIANCE] Claim retrieval unavailable, compliance skipped (degraded mode): {e!r}")
            return ClaimsValidationResult.vacuous(degraded=True)
        except Exception as e:
            logger.error(f"[COMPLIANCE] Claim retrieval failed, compliance skipped (degraded mode): {e!r}")
            return ClaimsValidationResult.vacuous(degraded=True)

        significant = [r for r in records if r.similarity_score >= threshold]
        forbidden = [r for r in significant if r.claim_type == ClaimType.FORBIDDEN]
        allowed = [r for r in significant if r.claim_type == ClaimType.ALLOWED]

        total = len(significant)
        score = (total - len(forbidden)) / total if total > 0 else 1.0

        result = ClaimsValidationResult(
            is_compliant=len(forbidden) == 0,
            violated_claims=list(dict.fromkeys(r.claim_text for r in forbidden)),
            allowed_claims=list(dict.fromkeys(r.claim_text for r in allowed)),
            suggestions=list(COMPLIANCE_SUGGESTIONS) if forbidden else [],
            compliance_score=score,
        )
        logger.info(
            f"[COMPLIANCE] {total} significant claim(s), {len(forbidden)} forbidden, "
            f"score={score:.2f} (threshold={threshold})"
        )
        return result
