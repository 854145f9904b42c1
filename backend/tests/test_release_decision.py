import pytest
from pydantic import ValidationError

from agent.schemas import ClaimsValidationResult
from compliance.decision import ReleaseStatus
from compliance.engine import classify_release


def _violation():
    return ClaimsValidationResult(is_compliant=False, violated_claims=["Cures nausea"], compliance_score=0.0)


def test_no_validation_is_not_required():
    assert classify_release(None).status == ReleaseStatus.NOT_REQUIRED


def test_compliance_not_required_wins():
    decision = classify_release(_violation(), attempts=3, compliance_required=False)
    assert decision.status == ReleaseStatus.NOT_REQUIRED


def test_degraded_is_skipped_not_approved():
    decision = classify_release(ClaimsValidationResult.vacuous(degraded=True))
    assert decision.status == ReleaseStatus.COMPLIANCE_SKIPPED


def test_exhausted_is_flagged():
    decision = classify_release(_violation(), attempts=3)
    assert decision.status == ReleaseStatus.FLAGGED_NON_COMPLIANT
    assert decision.attempts == 3
    assert "1 forbidden claim" in decision.reason


def test_compliant_after_rewrite():
    decision = classify_release(ClaimsValidationResult.vacuous(), attempts=1)
    assert decision.status == ReleaseStatus.REWRITTEN
    assert decision.compliance_score == 1.0


def test_compliant_first_time_is_approved():
    assert classify_release(ClaimsValidationResult.vacuous()).status == ReleaseStatus.APPROVED


def test_validation_result_consistency_enforced():
    with pytest.raises(ValidationError):
        ClaimsValidationResult(is_compliant=True, violated_claims=["Cures nausea"])
