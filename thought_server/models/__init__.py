"""Data models for records and tool requests."""
from .records import (
    CATEGORY_BANDS,
    ChainSummary,
    DraftRecord,
    IntegratedResult,
    ProcessingState,
    ScoreBreakdown,
    StepCategory,
    StepContext,
    StepMetrics,
    StepRecord,
    ThoughtRecord,
    ThoughtResult,
    within_band,
)
from .requests import (
    DraftRequest,
    IntegratedRequest,
    SetFeatureRequest,
    ThoughtRequest,
    ToolFeatures,
)

__all__ = [
    "CATEGORY_BANDS",
    "ChainSummary",
    "DraftRecord",
    "IntegratedResult",
    "ProcessingState",
    "ScoreBreakdown",
    "StepCategory",
    "StepContext",
    "StepMetrics",
    "StepRecord",
    "ThoughtRecord",
    "ThoughtResult",
    "within_band",
    "DraftRequest",
    "IntegratedRequest",
    "SetFeatureRequest",
    "ThoughtRequest",
    "ToolFeatures",
]
