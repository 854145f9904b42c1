from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional, Dict, Any
from enum import Enum

from compliance.decision import ReleaseDecision


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class Intent(str, Enum):
    PRODUCT_INFO = "product_info"
    RECOMMENDATION = "recommendation"
    ORDER_LOOKUP = "order_lookup"
    HANDOFF = "handoff"
    GENERAL_CHAT = "general_chat"

    @classmethod
    def _missing_(cls, value):
        """Handle case-insensitive enum matching (e.g., 'PRODUCT_INFO' -> 'product_info')"""
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class ClaimType(str, Enum):
    ALLOWED = "allowed"
    FORBIDDEN = "forbidden"
    GENERAL = "general"


class ToolCall(BaseModel):
    """A single tool invocation requested by the model."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """
    One conversation entry. Immutable once created; the conversation log only grows.
    Audit fields are attached to the released assistant message only.
    """
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    # --- Audit (final assistant message) ---
    claims_validation: Optional["ClaimsValidationResult"] = None
    original_response: Optional[str] = None
    release: Optional[ReleaseDecision] = None

    @property
    def dedup_key(self) -> tuple:
        return (self.role, self.content, self.tool_call_id)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)


class ClaimRecord(BaseModel):
    """A health/nutrition claim match returned by the retrieval backend."""
    claim_text: str
    claim_type: ClaimType = ClaimType.GENERAL
    nutrient_or_topic: str = ""
    scope: str = ""
    similarity_score: float = Field(..., ge=0.0, le=1.0)

    @field_validator("claim_type", mode="before")
    @classmethod
    def normalize_claim_type(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in {t.value for t in ClaimType}:
                return ClaimType.GENERAL
        return v


class ClaimsValidationResult(BaseModel):
    """
    Verdict of the compliance gate for one candidate text.
    `degraded` marks a verdict produced without a reachable claim backend:
    compliance was skipped, not passed.
    """
    is_compliant: bool
    violated_claims: List[str] = Field(default_factory=list)
    allowed_claims: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    compliance_score: float = Field(default=1.0, ge=0.0, le=1.0)
    degraded: bool = False

    @model_validator(mode="after")
    def check_consistency(self):
        if self.is_compliant != (len(self.violated_claims) == 0):
            raise ValueError("is_compliant must be true exactly when violated_claims is empty.")
        return self

    @classmethod
    def vacuous(cls, degraded: bool = False) -> "ClaimsValidationResult":
        return cls(is_compliant=True, compliance_score=1.0, degraded=degraded)


class IntentClassification(BaseModel):
    """Structured output of the intent classifier."""
    intent: Intent = Field(..., description="The classified intent based on the user's message")
    confidence: float = Field(
        ..., ge=0.0, le=1.0, description="Confidence score for the classification (0.0 to 1.0)"
    )
    reasoning: str = Field(..., description="Brief explanation for why this intent was chosen")

    @classmethod
    def fallback(cls, reasoning: str = "fallback") -> "IntentClassification":
        return cls(intent=Intent.GENERAL_CHAT, confidence=0.0, reasoning=reasoning)


class SearchQuery(BaseModel):
    """Catalog search extracted from recent conversation."""
    search_query: str = Field(..., description="Specific search query to find the most relevant products")
    context: str = Field(
        default="",
        description="Additional context about customer preferences, needs, or constraints",
    )


class RoutingConfig(BaseModel):
    """Per-turn knobs. Frozen for the duration of a turn."""
    model_config = ConfigDict(frozen=True)

    claims_validation_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    max_regeneration_attempts: int = Field(default=3, ge=1)
    context_window_size: int = Field(default=10, ge=1)
    history_cap: int = Field(default=30, ge=1)
    claims_top_k: int = Field(default=25, ge=1)
    max_tool_rounds: int = Field(default=5, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)
    intent_confidence_floor: float = Field(default=0.4, ge=0.0, le=1.0)
    uniform_passthrough: bool = False

    # --- Routing context for catalog / order tools ---
    shop_domain: Optional[str] = None
    session_token: Optional[str] = None


Message.model_rebuild()
