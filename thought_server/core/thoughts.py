"""Sequential thought chain with branching, partitioned by session."""
import asyncio
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from ..config import EnhancementConfig, ThoughtConfig
from ..models.records import (
    ChainSummary,
    ProcessingState,
    StepCategory,
    StepMetrics,
    ThoughtRecord,
    ThoughtResult,
)
from ..models.requests import ThoughtRequest
from ..utils.logging import get_logger
from .debug import DebugControl
from .errors import (
    InputValidationError,
    InvariantViolationError,
    ProcessingError,
    ReferenceNotFoundError,
    validate_request,
)
from .scoring import (
    HISTORY_WINDOW,
    Classifier,
    KeywordThoughtClassifier,
    Scorer,
    apply_floors,
    is_acceptable,
)

logger = get_logger(__name__)

KEY_INSIGHT_CONFIDENCE = 0.8
MAX_KEY_INSIGHTS = 3
INSIGHT_EXCERPT_CHARS = 200
LOW_SUCCESS_RATE = 0.7
SLOW_PROCESSING_MS = 1000.0


class ThoughtChain:
    """In-memory thought history of one session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.history: List[ThoughtRecord] = []
        self.branches: Dict[str, List[ThoughtRecord]] = {}
        self.state = ProcessingState()
        self.processing_times: List[float] = []
        self.completed = 0
        self.total_expected = 0
        self.lock = asyncio.Lock()

    def scope(self, branch_id: Optional[str]) -> List[ThoughtRecord]:
        """Records of one branch, or of the main line when ``branch_id`` is None."""
        if branch_id is not None:
            return self.branches.get(branch_id, [])
        return [record for record in self.history if record.branch_id is None]

    def find(self, branch_id: Optional[str], number: int) -> Optional[ThoughtRecord]:
        """Latest record with the given number in a scope."""
        for record in reversed(self.scope(branch_id)):
            if record.sequence_number == number:
                return record
        return None

    def has_thought(self, number: int) -> bool:
        return any(record.sequence_number == number for record in self.history)

    @property
    def average_processing_time(self) -> float:
        if not self.processing_times:
            return 0.0
        return sum(self.processing_times) / len(self.processing_times)

    @property
    def progress(self) -> float:
        if self.total_expected <= 0:
            return 0.0
        return min(1.0, self.completed / self.total_expected)

    def summarize(self) -> ChainSummary:
        """Category histogram, mean confidence and high-confidence excerpts."""
        counts: Dict[str, int] = {}
        insights: List[str] = []
        for record in self.history:
            if record.category is not None:
                counts[record.category.type] = counts.get(record.category.type, 0) + 1
            if record.confidence >= KEY_INSIGHT_CONFIDENCE:
                excerpt = record.content[:INSIGHT_EXCERPT_CHARS]
                if excerpt not in insights:
                    insights.append(excerpt)

        average = (
            sum(record.confidence for record in self.history) / len(self.history)
            if self.history else 0.0
        )
        return ChainSummary(
            total_thoughts=len(self.history),
            branches=len(self.branches),
            category_counts=counts,
            average_confidence=average,
            key_insights=insights[:MAX_KEY_INSIGHTS],
        )


class ThoughtChainMachine:
    """Arena of per-session thought chains."""

    def __init__(
        self,
        scorer: Scorer,
        config: ThoughtConfig,
        enhancement: EnhancementConfig,
        debug: DebugControl,
        classifier: Optional[Classifier] = None,
    ):
        self.scorer = scorer
        self.config = config
        self.enhancement = enhancement
        self.debug = debug
        self.classifier = classifier or KeywordThoughtClassifier()
        self._chains: Dict[str, ThoughtChain] = {}

    def chain(self, session_id: str) -> ThoughtChain:
        """Chain of a session, created lazily."""
        if session_id not in self._chains:
            self._chains[session_id] = ThoughtChain(session_id)
        return self._chains[session_id]

    def has_session(self, session_id: str) -> bool:
        return session_id in self._chains

    def close_session(self, session_id: str) -> bool:
        """Evict a session's chain. Returns whether one existed."""
        return self._chains.pop(session_id, None) is not None

    async def submit_thought(
        self,
        session_id: str,
        request: Union[ThoughtRequest, Mapping[str, Any]],
    ) -> ThoughtResult:
        """Validate, score and record one thought."""
        request = validate_request(ThoughtRequest, request)
        if request.thought_number > self.config.max_depth:
            raise InputValidationError(
                f"Thought number exceeds maximum depth of {self.config.max_depth}",
                phase="validation",
            )

        chain = self.chain(session_id)
        async with chain.lock:
            self._check_references(chain, request)

            state = chain.state
            state.phase = "processing"
            try:
                record = await self._process(chain, request)
            except ProcessingError as e:
                self._fail(chain, e)
                raise e.attach("processing", state.snapshot())
            except Exception as e:
                error = ProcessingError(f"Failed to process thought: {e}")
                self._fail(chain, error)
                raise error.attach("processing", state.snapshot()) from e

            summary = None
            if record.sequence_number == record.total_estimated:
                state.phase = "completion"
                if self.enhancement.summarization:
                    summary = chain.summarize()

            result = ThoughtResult(
                record=record,
                branches=list(chain.branches),
                history_length=len(chain.history),
                progress=chain.progress,
                phase=state.phase,
                summary=summary,
                adaptation_history=list(state.adaptation_history),
            )

        if self.debug.performance_monitoring:
            logger.info(
                "thought_metrics",
                session_id=session_id,
                thought=record.sequence_number,
                processing_time_ms=record.metrics.processing_time_ms,
                average_processing_ms=chain.average_processing_time,
                branches=len(chain.branches),
            )
        return result

    async def retract(self, session_id: str, record: ThoughtRecord) -> bool:
        """Remove a recorded thought whose turn failed further downstream."""
        chain = self._chains.get(session_id)
        if chain is None:
            return False
        async with chain.lock:
            if not any(r is record for r in chain.history):
                return False
            chain.history = [r for r in chain.history if r is not record]
            if record.branch_id is not None:
                remaining = [r for r in chain.branches.get(record.branch_id, []) if r is not record]
                if remaining:
                    chain.branches[record.branch_id] = remaining
                else:
                    chain.branches.pop(record.branch_id, None)
            if record.metrics.processing_time_ms in chain.processing_times:
                chain.processing_times.remove(record.metrics.processing_time_ms)

            if self.enhancement.progress_tracking:
                chain.completed = max(0, chain.completed - 1)
                chain.total_expected = max(
                    (r.total_estimated for r in chain.history), default=0
                )
            state = chain.state
            state.completed_steps = max(0, state.completed_steps - 1)
            state.pending_branches = list(chain.branches)
            if state.phase == "completion":
                state.phase = "processing"

        logger.info(
            "thought_retracted",
            session_id=session_id,
            thought=record.sequence_number,
            branch=record.branch_id,
        )
        return True

    def _check_references(self, chain: ThoughtChain, request: ThoughtRequest) -> None:
        """Reject illegal revisions and branches before any state changes."""
        if request.branch_id is not None:
            if not self.config.branching_enabled:
                raise InvariantViolationError(
                    "Branching is disabled in current configuration", phase="validation"
                )
            if not chain.has_thought(request.branch_from_thought):
                raise ReferenceNotFoundError(
                    f"Cannot branch from thought {request.branch_from_thought}: it does not exist",
                    phase="validation",
                )
            if request.branch_id not in chain.branches and request.thought_number != 1:
                raise InvariantViolationError(
                    f"Branch '{request.branch_id}' must start at thought 1, "
                    f"got {request.thought_number}",
                    phase="validation",
                )

        if request.is_revision:
            if not self.config.revision_enabled:
                raise InvariantViolationError(
                    "Revisions are disabled in current configuration", phase="validation"
                )
            if chain.find(request.branch_id, request.revises_thought) is None:
                where = f"branch '{request.branch_id}'" if request.branch_id else "the main chain"
                raise ReferenceNotFoundError(
                    f"Thought {request.revises_thought} to revise not found in {where}",
                    phase="validation",
                )

    async def _process(self, chain: ThoughtChain, request: ThoughtRequest) -> ThoughtRecord:
        start = time.perf_counter()
        state = chain.state
        number = request.thought_number

        if self.enhancement.dynamic_adaptation:
            self._adapt(chain)

        scope = [r for r in chain.scope(request.branch_id) if r.sequence_number < number]
        history = scope[-HISTORY_WINDOW:]
        previous = chain.find(request.branch_id, number - 1) if number > 1 else None
        original = (
            chain.find(request.branch_id, request.revises_thought)
            if request.is_revision else None
        )

        score = await self.scorer.score_step(
            request.thought,
            context=request.context,
            history=history,
            threshold=self.config.confidence_threshold,
            is_revision=request.is_revision,
            original_text=original.content if original else None,
            parallel=self.config.parallel_processing,
        )
        computed = score.confidence
        confidence = apply_floors(
            computed,
            thresholds=self.config,
            revision_floor=original.confidence if original else None,
            previous_confidence=previous.confidence if previous else None,
        )
        if confidence != computed:
            logger.debug(
                "thought_confidence_raised",
                session_id=chain.session_id,
                thought=number,
                computed=round(computed, 4),
                confidence=round(confidence, 4),
            )

        acceptable = is_acceptable(
            request.thought,
            computed,
            request.is_revision,
            previous.confidence if previous else None,
            self.config,
        )

        elapsed_ms = (time.perf_counter() - start) * 1000
        record = ThoughtRecord(
            content=request.thought,
            sequence_number=number,
            total_estimated=max(request.total_thoughts, number),
            is_revision=request.is_revision,
            revises_sequence_number=request.revises_thought if request.is_revision else None,
            category=self._categorize(request),
            confidence=confidence,
            needs_revision=not acceptable,
            metrics=StepMetrics(
                processing_time_ms=elapsed_ms,
                resource_bytes=self.scorer.memory_probe(),
                dependency_chain=self._dependency_chain(chain, request),
            ),
            context=request.context,
            score=score,
            branch_id=request.branch_id,
            branch_from=request.branch_from_thought,
            next_thought_needed=request.next_thought_needed,
            needs_more_thoughts=request.needs_more_thoughts,
        )

        chain.history.append(record)
        if request.branch_id is not None:
            chain.branches.setdefault(request.branch_id, []).append(record)
        chain.processing_times.append(elapsed_ms)

        if self.enhancement.progress_tracking:
            chain.completed += 1
            chain.total_expected = max(chain.total_expected, record.total_estimated)
        state.completed_steps += 1
        state.estimated_remaining_steps = max(0, record.total_estimated - number)
        state.pending_branches = list(chain.branches)

        logger.info(
            "thought_processed",
            session_id=chain.session_id,
            thought=number,
            branch=request.branch_id,
            confidence=round(confidence, 4),
            category=record.category.type if record.category else None,
        )
        return record

    def _categorize(self, request: ThoughtRequest) -> Optional[StepCategory]:
        if not self.enhancement.categorization:
            return request.category
        tag, score = self.classifier.classify(request.thought)
        if tag is None:
            return request.category
        metadata = request.category.metadata if request.category else None
        return StepCategory(type=tag, confidence=score, metadata=metadata)

    @staticmethod
    def _dependency_chain(chain: ThoughtChain, request: ThoughtRequest) -> List[str]:
        breadcrumbs = []
        if request.branch_from_thought is not None:
            breadcrumbs.append(f"Branch from thought {request.branch_from_thought}")
        if request.is_revision:
            breadcrumbs.append(f"Revises thought {request.revises_thought}")
        if request.branch_id is not None:
            count = len(chain.branches.get(request.branch_id, []))
            breadcrumbs.append(f"Branch {request.branch_id} history: {count} thoughts")
        return breadcrumbs

    def _adapt(self, chain: ThoughtChain) -> None:
        if not chain.history:
            return
        recent = chain.history[-HISTORY_WINDOW:]
        rate = sum(1 for r in recent if not r.needs_revision) / len(recent)
        if rate < LOW_SUCCESS_RATE:
            chain.state.record_adaptation(
                "Increased confidence threshold due to low success rate",
                f"Success rate {rate:.2f} below {LOW_SUCCESS_RATE}",
            )
        average = chain.average_processing_time
        if average > SLOW_PROCESSING_MS:
            chain.state.record_adaptation(
                "Disabled parallel processing due to high processing time",
                f"Average processing time {average:.0f}ms above {SLOW_PROCESSING_MS:.0f}ms",
            )

    def _fail(self, chain: ThoughtChain, error: ProcessingError) -> None:
        chain.state.phase = "error"
        if self.debug.error_capture:
            logger.error(
                "thought_failed",
                session_id=chain.session_id,
                kind=error.kind,
                error=error.message,
                state=chain.state.snapshot(),
            )
