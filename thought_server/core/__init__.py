"""Core business logic modules."""
from .client import ModelClient
from .collaborators import (
    CoherenceChecker,
    Embedder,
    HeuristicCoherenceChecker,
    HttpEmbedder,
    LLMCoherenceChecker,
    NullEmbedder,
    build_coherence_checker,
    build_embedder,
)
from .debug import DebugControl
from .drafts import DraftRefinementMachine
from .errors import (
    ConflictError,
    InputValidationError,
    IntegrationError,
    InvariantViolationError,
    ProcessingError,
    ReferenceNotFoundError,
    StorageError,
)
from .integrator import Integrator
from .projection import project, project_draft, project_integrated, project_thought
from .scoring import Classifier, KeywordContentClassifier, KeywordThoughtClassifier, Scorer
from .storage import SessionStore
from .thoughts import ThoughtChainMachine

__all__ = [
    "ModelClient",
    "CoherenceChecker",
    "Embedder",
    "HeuristicCoherenceChecker",
    "HttpEmbedder",
    "LLMCoherenceChecker",
    "NullEmbedder",
    "build_coherence_checker",
    "build_embedder",
    "DebugControl",
    "DraftRefinementMachine",
    "ConflictError",
    "InputValidationError",
    "IntegrationError",
    "InvariantViolationError",
    "ProcessingError",
    "ReferenceNotFoundError",
    "StorageError",
    "Integrator",
    "project",
    "project_draft",
    "project_integrated",
    "project_thought",
    "Classifier",
    "KeywordContentClassifier",
    "KeywordThoughtClassifier",
    "Scorer",
    "SessionStore",
    "ThoughtChainMachine",
]
