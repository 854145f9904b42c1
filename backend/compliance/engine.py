from typing import Optional

from agent.schemas import ClaimsValidationResult
from compliance.decision import ReleaseDecision, ReleaseStatus


def classify_release(
    validation: Optional[ClaimsValidationResult],
    attempts: int = 0,
    compliance_required: bool = True,
) -> ReleaseDecision:
    """
    Deterministically labels how a final reply left the compliance gate.
    The label travels with the released message as its audit record.
    """

    # 1. Gate never engaged (no regulated content produced this turn)
    if not compliance_required or validation is None:
        return ReleaseDecision(
            status=ReleaseStatus.NOT_REQUIRED,
            reason="No product information was used; compliance check not required.",
        )

    # 2. Backend unreachable: skipped, not passed
    if validation.degraded:
        return ReleaseDecision(
            status=ReleaseStatus.COMPLIANCE_SKIPPED,
            reason="Claim retrieval unavailable; released without a compliance verdict.",
            compliance_score=validation.compliance_score,
            attempts=attempts,
        )

    # 3. Exhausted rewrites
    if not validation.is_compliant:
        return ReleaseDecision(
            status=ReleaseStatus.FLAGGED_NON_COMPLIANT,
            reason=(
                f"Still contains {len(validation.violated_claims)} forbidden claim(s) "
                f"after {attempts} rewrite attempt(s)."
            ),
            compliance_score=validation.compliance_score,
            attempts=attempts,
        )

    # 4. Compliant, possibly after rewriting
    if attempts > 0:
        return ReleaseDecision(
            status=ReleaseStatus.REWRITTEN,
            reason=f"Compliant after {attempts} rewrite attempt(s).",
            compliance_score=validation.compliance_score,
            attempts=attempts,
        )

    return ReleaseDecision(
        status=ReleaseStatus.APPROVED,
        reason="No forbidden claims above the similarity threshold.",
        compliance_score=validation.compliance_score,
        attempts=attempts,
    )
