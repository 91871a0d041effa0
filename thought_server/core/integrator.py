"""Fusion of one thought and one draft into a single per-turn result."""
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..config import ServerConfig
from ..models.records import (
    CATEGORY_BANDS,
    DraftRecord,
    Enhancements,
    IntegratedMetrics,
    IntegratedResult,
    ProcessingState,
    StepCategory,
    StepContext,
    ThoughtResult,
    within_band,
)
from ..models.requests import IntegratedRequest
from ..utils.logging import get_logger
from .debug import DebugControl
from .drafts import DraftRefinementMachine
from .errors import IntegrationError, validate_request
from .scoring import DEFAULT_PROCESSING_MS, Scorer, clamp, resource_efficiency
from .thoughts import ThoughtChainMachine

logger = get_logger(__name__)


class IntegratorSession:
    """Per-session bookkeeping of integrated turns."""

    def __init__(self):
        self.state = ProcessingState()
        self.previous_confidence: Optional[float] = None
        self.total_turns = 0
        self.failed_turns = 0
        self.last_error: Optional[str] = None
        self.processing_times: List[float] = []

    @property
    def success_rate(self) -> float:
        if self.total_turns == 0:
            return 1.0
        return (self.total_turns - self.failed_turns) / self.total_turns

    @property
    def average_processing_time(self) -> float:
        if not self.processing_times:
            return DEFAULT_PROCESSING_MS
        return sum(self.processing_times) / len(self.processing_times)


def default_category(thought_number: int, total_thoughts: int) -> StepCategory:
    """Category implied by the step position."""
    if thought_number == 1:
        return StepCategory(type="initial", confidence=0.6)
    if thought_number >= total_thoughts:
        return StepCategory(type="final", confidence=0.9)
    if thought_number % 2 == 0:
        return StepCategory(type="critique", confidence=0.7)
    return StepCategory(type="revision", confidence=0.7)


def correct_category(
    category: StepCategory,
    request: IntegratedRequest,
) -> Tuple[StepCategory, bool]:
    """Downgrade a premature ``final`` to critique (even) or revision (odd)."""
    terminal = (
        request.thought_number >= request.total_thoughts
        and request.draft_number >= request.total_drafts
    )
    if category.type != "final" or terminal:
        return category, False
    downgraded = "critique" if request.thought_number % 2 == 0 else "revision"
    return category.model_copy(update={"type": downgraded}), True


class Integrator:
    """Runs the thought machine then the draft machine and fuses the results."""

    def __init__(
        self,
        thoughts: ThoughtChainMachine,
        drafts: DraftRefinementMachine,
        scorer: Scorer,
        config: ServerConfig,
        debug: DebugControl,
    ):
        """Initialize with both machines and the shared scorer."""
        self.thoughts = thoughts
        self.drafts = drafts
        self.scorer = scorer
        self.config = config
        self.weights = config.integrated
        self.debug = debug
        self._sessions: Dict[str, IntegratorSession] = {}

    def session(self, session_id: str) -> IntegratorSession:
        if session_id not in self._sessions:
            self._sessions[session_id] = IntegratorSession()
        return self._sessions[session_id]

    async def process(
        self,
        session_id: str,
        request: Union[IntegratedRequest, Mapping[str, Any]],
    ) -> IntegratedResult:
        """Process one integrated turn."""
        request = validate_request(IntegratedRequest, request)
        session = self.session(session_id)
        session.state.phase = "processing"
        start = time.perf_counter()

        category = request.category or default_category(
            request.thought_number, request.total_thoughts
        )
        category, corrected = correct_category(category, request)
        if corrected:
            logger.info(
                "category_downgraded",
                session_id=session_id,
                thought=request.thought_number,
                category=category.type,
            )

        logger.info(
            "integrated_start",
            session_id=session_id,
            thought=request.thought_number,
            draft=request.draft_number,
        )

        thought: Optional[ThoughtResult] = None
        try:
            thought = await self.thoughts.submit_thought(
                session_id, self._thought_request(request)
            )
            draft = await self.drafts.submit_draft(
                session_id, self._draft_request(request, category)
            )
            result = await self._fuse(session, request, thought, draft, category, corrected, start)
        except Exception as e:
            # a failed turn leaves no thought behind
            if thought is not None:
                await self.thoughts.retract(session_id, thought.record)
            session.total_turns += 1
            session.failed_turns += 1
            session.last_error = str(e)
            failing_phase = session.state.phase
            session.state.phase = "error"
            if self.debug.error_capture:
                logger.error(
                    "integrated_failed",
                    session_id=session_id,
                    error=str(e),
                    failed_turns=session.failed_turns,
                    total_turns=session.total_turns,
                )
            raise IntegrationError(e, phase=failing_phase, state=session.state.snapshot()) from e

        logger.info(
            "integrated_complete",
            session_id=session_id,
            confidence=round(result.confidence, 4),
            category=result.category.type,
            phase=result.phase,
        )
        return result

    @staticmethod
    def _thought_request(request: IntegratedRequest) -> Dict[str, Any]:
        return dict(
            thought=request.content,
            thought_number=request.thought_number,
            total_thoughts=request.total_thoughts,
            next_thought_needed=request.next_step_needed,
            is_revision=request.is_revision,
            revises_thought=request.revises_thought if request.is_revision else None,
            branch_from_thought=request.branch_from_thought,
            branch_id=request.branch_id,
            context=request.context,
        )

    @staticmethod
    def _draft_request(request: IntegratedRequest, category: StepCategory) -> Dict[str, Any]:
        return dict(
            content=request.content,
            draft_number=request.draft_number,
            total_drafts=request.total_drafts,
            next_step_needed=request.next_step_needed,
            needs_revision=request.needs_revision,
            is_revision=request.is_revision,
            revises_draft=request.revises_draft if request.is_revision else None,
            is_critique=request.is_critique or category.type == "critique",
            critique_focus=request.critique_focus,
            reasoning_chain=request.reasoning_chain,
            category=category,
            context=request.context,
        )

    async def _fuse(
        self,
        session: IntegratorSession,
        request: IntegratedRequest,
        thought: ThoughtResult,
        draft: DraftRecord,
        category: StepCategory,
        corrected: bool,
        start: float,
    ) -> IntegratedResult:
        thought_confidence = thought.record.confidence
        draft_confidence = draft.confidence
        text = "\n".join(part for part in (thought.record.content, draft.content) if part)
        context = StepContext.merge([thought.record.context, draft.context])

        quality = await self.scorer.quality(text)
        content_quality = 0.5 * quality + 0.5 * (0.6 * thought_confidence + 0.4 * draft_confidence)
        relevance = await self.scorer.context_relevance(text, context)
        memory = self.scorer.memory_probe()
        resource = resource_efficiency(memory, session.average_processing_time)
        processing_success = session.success_rate

        confidence = (
            content_quality * self.weights.content_weight
            + processing_success * self.weights.processing_weight
            + relevance * self.weights.context_weight
            + resource * self.weights.resource_weight
        )

        if session.previous_confidence is not None:
            confidence = max(
                confidence,
                session.previous_confidence + self.config.draft.min_confidence_growth,
            )
        if thought.record.is_revision or draft.is_revision:
            confidence = max(
                confidence,
                self.config.draft.min_revision_confidence,
                thought_confidence,
                draft_confidence,
            )
        confidence = clamp(confidence, self.weights.min_confidence, self.weights.max_confidence)

        elapsed_ms = (time.perf_counter() - start) * 1000
        session.total_turns += 1
        session.processing_times.append(elapsed_ms)
        session.previous_confidence = confidence
        session.state.completed_steps += 1
        session.state.estimated_remaining_steps = max(
            0, request.total_thoughts - request.thought_number
        )

        terminal = (
            request.thought_number >= request.total_thoughts
            and request.draft_number >= request.total_drafts
        )
        session.state.phase = (
            "completion" if terminal and not request.next_step_needed else "processing"
        )

        final_category = category.model_copy(update={"confidence": confidence})
        return IntegratedResult(
            thought=thought,
            draft=draft,
            confidence=confidence,
            category=final_category,
            category_corrected=corrected,
            enhancements=self._enhancements(request, final_category, draft),
            metrics=IntegratedMetrics(
                content_quality=content_quality,
                success_rate=processing_success,
                context_relevance=relevance,
                resource_efficiency=resource,
                processing_time_ms=elapsed_ms,
                memory_bytes=memory,
                total_turns=session.total_turns,
                failed_turns=session.failed_turns,
            ),
            phase=session.state.phase,
        )

    def _enhancements(
        self,
        request: IntegratedRequest,
        category: StepCategory,
        draft: DraftRecord,
    ) -> Enhancements:
        suggestions = []
        optimizations = []

        if request.features.parallel_processing:
            suggestions.append("Consider parallel processing for improved performance")
        if not within_band(category.type, category.confidence):
            low, high = CATEGORY_BANDS[category.type]
            suggestions.append(
                f"Confidence {category.confidence:.2f} is outside the expected "
                f"{low:.1f}-{high:.1f} range for a '{category.type}' step"
            )
        if draft.needs_revision:
            suggestions.append("Draft does not meet the acceptance threshold yet; consider a revision")
        if request.features.monitoring:
            optimizations.append("Optimized context window based on monitoring")

        return Enhancements(
            context_window=max(self.config.draft.context_window, self.config.thought.context_window),
            suggestions=suggestions,
            optimizations=optimizations,
        )

    async def close_session(self, session_id: str, purge_drafts: bool = False) -> None:
        """Evict all in-memory state of a session, optionally deleting its drafts."""
        self.thoughts.close_session(session_id)
        await self.drafts.close_session(session_id, purge=purge_drafts)
        self._sessions.pop(session_id, None)
        logger.info("session_closed", session_id=session_id, purge_drafts=purge_drafts)
