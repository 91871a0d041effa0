"""Records produced by the refinement machines."""
import time
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ContentType = Literal["technical", "creative", "hybrid"]
CategoryType = Literal[
    "initial", "critique", "revision", "final",
    "analysis", "hypothesis", "verification", "solution",
]
Phase = Literal[
    "initialization", "drafting", "processing", "critique",
    "revision", "completion", "error",
]

DRAFT_CATEGORIES = ("initial", "critique", "revision", "final")
THOUGHT_CATEGORIES = ("analysis", "hypothesis", "verification", "revision", "solution")

# Expected confidence band per category type
CATEGORY_BANDS: Dict[str, Tuple[float, float]] = {
    "initial": (0.4, 0.7),
    "critique": (0.5, 0.9),
    "revision": (0.6, 0.9),
    "final": (0.9, 1.0),
    "analysis": (0.4, 0.8),
    "hypothesis": (0.3, 0.7),
    "verification": (0.5, 0.9),
    "solution": (0.7, 1.0),
}


def within_band(category_type: str, confidence: float) -> bool:
    """Check a confidence value against the band expected for a category."""
    band = CATEGORY_BANDS.get(category_type)
    if band is None:
        return True
    low, high = band
    return low <= confidence <= high


class StepContext(BaseModel):
    """Caller-supplied problem context, sanitized on the way in."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    problem_scope: str = ""
    assumptions: List[str] = []
    constraints: List[str] = []

    @field_validator("problem_scope", mode="before")
    @classmethod
    def _clean_scope(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("assumptions", "constraints", mode="before")
    @classmethod
    def _clean_entries(cls, value: Any) -> List[str]:
        if not isinstance(value, (list, tuple)):
            return []
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]

    def strings(self) -> List[str]:
        """Non-empty context strings: scope, constraints, assumptions."""
        items = [self.problem_scope] if self.problem_scope else []
        return items + list(self.constraints) + list(self.assumptions)

    def has_content(self) -> bool:
        return bool(self.problem_scope or self.assumptions or self.constraints)

    def richness(self) -> float:
        score = 0.0
        if self.problem_scope:
            score += 0.4
        if self.assumptions:
            score += 0.3
        if self.constraints:
            score += 0.3
        return score

    @classmethod
    def merge(cls, contexts: Iterable["StepContext"]) -> "StepContext":
        """Combine contexts; the last non-empty scope wins."""
        scope = ""
        assumptions: List[str] = []
        constraints: List[str] = []
        for context in contexts:
            if context is None:
                continue
            if context.problem_scope:
                scope = context.problem_scope
            assumptions.extend(a for a in context.assumptions if a not in assumptions)
            constraints.extend(c for c in context.constraints if c not in constraints)
        return cls(problem_scope=scope, assumptions=assumptions, constraints=constraints)


class StepCategory(BaseModel):
    """Category tag attached to a step."""
    type: CategoryType
    confidence: float = Field(default=0.5, ge=0, le=1)
    metadata: Optional[Dict[str, Any]] = None


class StepMetrics(BaseModel):
    """Diagnostics recorded for a step."""
    processing_time_ms: float = 0.0
    resource_bytes: int = 0
    dependency_chain: List[str] = []


class ScoreBreakdown(BaseModel):
    """Sub-scores and bounds behind a step confidence."""
    content_type: ContentType
    quality: float
    context: float
    creativity: float
    revision: float
    history: float
    resource: float
    raw: float
    floor: float
    ceiling: float
    confidence: float


class StepRecord(BaseModel):
    """A scored unit of work submitted by a caller."""
    content: str
    sequence_number: int = Field(ge=1)
    total_estimated: int = Field(ge=1)
    is_revision: bool = False
    revises_sequence_number: Optional[int] = None
    category: Optional[StepCategory] = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    needs_revision: bool = False
    metrics: StepMetrics = Field(default_factory=StepMetrics)
    context: StepContext = Field(default_factory=StepContext)
    score: Optional[ScoreBreakdown] = None

    @model_validator(mode="after")
    def _check_revision_target(self) -> "StepRecord":
        if self.is_revision:
            target = self.revises_sequence_number
            if target is None or target >= self.sequence_number:
                raise ValueError("a revision must reference an earlier step")
        return self


class DraftRecord(StepRecord):
    """A persisted draft step."""
    is_critique: bool = False
    critique_focus: Optional[str] = None
    reasoning_chain: List[str] = []
    next_step_needed: bool = True
    creativity_score: Optional[float] = None

    @property
    def draft_number(self) -> int:
        return self.sequence_number

    @property
    def total_drafts(self) -> int:
        return self.total_estimated

    @property
    def revises_draft(self) -> Optional[int]:
        return self.revises_sequence_number


class ThoughtRecord(StepRecord):
    """An in-memory thought chain step."""
    branch_id: Optional[str] = None
    branch_from: Optional[int] = None
    next_thought_needed: bool = True
    needs_more_thoughts: bool = False

    @property
    def thought_number(self) -> int:
        return self.sequence_number

    @property
    def total_thoughts(self) -> int:
        return self.total_estimated

    @property
    def revises_thought(self) -> Optional[int]:
        return self.revises_sequence_number


class AdaptationEntry(BaseModel):
    """Observational log line about a strategy adjustment."""
    timestamp: float = Field(default_factory=time.time)
    adjustment: str
    reason: str


class ProcessingState(BaseModel):
    """Per-chain machine state."""
    phase: Phase = "initialization"
    completed_steps: int = 0
    estimated_remaining_steps: int = 0
    pending_branches: List[str] = []
    adaptation_history: List[AdaptationEntry] = []

    def record_adaptation(self, adjustment: str, reason: str) -> AdaptationEntry:
        entry = AdaptationEntry(adjustment=adjustment, reason=reason)
        self.adaptation_history.append(entry)
        return entry

    def snapshot(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"adaptation_history"})


class ChainSummary(BaseModel):
    """Aggregate report produced on the terminal thought."""
    total_thoughts: int
    branches: int
    category_counts: Dict[str, int] = {}
    average_confidence: float = 0.0
    key_insights: List[str] = []


class ThoughtResult(BaseModel):
    """Outcome of one thought submission."""
    record: ThoughtRecord
    branches: List[str] = []
    history_length: int = 0
    progress: float = 0.0
    phase: Phase = "processing"
    summary: Optional[ChainSummary] = None
    adaptation_history: List[AdaptationEntry] = []


class Enhancements(BaseModel):
    """Advisory output of the integrator."""
    context_window: int
    suggestions: List[str] = []
    optimizations: List[str] = []


class IntegratedMetrics(BaseModel):
    """Component scores and timing behind an integrated confidence."""
    content_quality: float
    success_rate: float
    context_relevance: float
    resource_efficiency: float
    processing_time_ms: float = 0.0
    memory_bytes: int = 0
    total_turns: int = 0
    failed_turns: int = 0


class IntegratedResult(BaseModel):
    """Fused outcome of one thought and one draft for a single turn."""
    thought: ThoughtResult
    draft: DraftRecord
    confidence: float = Field(ge=0, le=1)
    category: StepCategory
    category_corrected: bool = False
    enhancements: Enhancements
    metrics: IntegratedMetrics
    phase: Phase = "completion"
