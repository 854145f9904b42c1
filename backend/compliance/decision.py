from enum import Enum
from pydantic import BaseModel


class ReleaseStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    APPROVED = "approved"
    REWRITTEN = "rewritten"
    FLAGGED_NON_COMPLIANT = "flagged_non_compliant"
    COMPLIANCE_SKIPPED = "compliance_skipped"


class ReleaseDecision(BaseModel):
    status: ReleaseStatus
    reason: str
    compliance_score: float = 1.0
    attempts: int = 0
