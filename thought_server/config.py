"""Configuration management using Pydantic settings.

Defaults come from ``config.yaml``; environment variables (via
pydantic-settings) and explicit overrides are layered on top by the pure
``build_config`` function. The result is an immutable ``ServerConfig`` value
that is handed to each machine's constructor.
"""
import copy
from typing import Dict, Any, Literal, Optional
from pathlib import Path
import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent

Verbosity = Literal["minimal", "standard", "verbose"]


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class ModelConfig(FrozenModel):
    """Configuration for a single collaborator model."""
    name: str
    model: str = ""
    api_url: str = ""
    role: str = ""
    temperature: float = 0.2
    max_tokens: int = 50


class DraftConfig(FrozenModel):
    """Configuration for the draft refinement cycle."""
    max_drafts: int = Field(default=10, ge=1)
    context_window: int = Field(default=16384, ge=1)
    confidence_threshold: float = Field(default=0.6, ge=0, le=1)
    min_confidence_growth: float = Field(default=0.05, ge=0, le=1)
    min_revision_confidence: float = Field(default=0.65, ge=0, le=1)
    parallel_processing: bool = False
    revision_enabled: bool = True


class ThoughtConfig(FrozenModel):
    """Configuration for the sequential thought chain."""
    max_depth: int = Field(default=12, ge=1)
    context_window: int = Field(default=163840, ge=1)
    confidence_threshold: float = Field(default=0.6, ge=0, le=1)
    min_confidence_growth: float = Field(default=0.05, ge=0, le=1)
    min_revision_confidence: float = Field(default=0.65, ge=0, le=1)
    parallel_processing: bool = True
    branching_enabled: bool = True
    revision_enabled: bool = True


class IntegratedConfig(FrozenModel):
    """Weights and bounds for the fused per-turn confidence."""
    content_weight: float = Field(default=0.35, ge=0, le=1)
    processing_weight: float = Field(default=0.25, ge=0, le=1)
    context_weight: float = Field(default=0.25, ge=0, le=1)
    resource_weight: float = Field(default=0.15, ge=0, le=1)
    min_confidence: float = Field(default=0.4, ge=0, le=1)
    max_confidence: float = Field(default=0.95, ge=0, le=1)


class EnhancementConfig(FrozenModel):
    """Optional behaviours of the machines."""
    summarization: bool = True
    categorization: bool = True
    progress_tracking: bool = True
    dynamic_adaptation: bool = True


class DebugConfig(FrozenModel):
    """Initial state of the runtime debug toggles."""
    error_capture: bool = True
    metric_tracking: bool = True
    performance_monitoring: bool = False
    tool_debug: bool = False


class StorageConfig(FrozenModel):
    """Configuration for the draft session store."""
    path: str = "data/thought-server.sqlite"
    recent_window: int = Field(default=5, ge=1)


class ServiceConfig(FrozenModel):
    """Configuration for service metadata."""
    name: str = "thought-server"
    description: str = "Confidence-scored draft and thought refinement"
    verbosity: Verbosity = "standard"


def _default_models() -> Dict[str, ModelConfig]:
    return {
        "coherence_checker": ModelConfig(name="coherence_checker", role="coherence"),
        "embedder": ModelConfig(name="embedder", role="embedding", temperature=0, max_tokens=0),
    }


class ServerConfig(FrozenModel):
    """Main application configuration."""
    models: Dict[str, ModelConfig] = Field(default_factory=_default_models)
    draft: DraftConfig = DraftConfig()
    thought: ThoughtConfig = ThoughtConfig()
    integrated: IntegratedConfig = IntegratedConfig()
    enhancement: EnhancementConfig = EnhancementConfig()
    debug: DebugConfig = DebugConfig()
    storage: StorageConfig = StorageConfig()
    service: ServiceConfig = ServiceConfig()


class Settings(BaseSettings):
    """Environment-based settings.

    Optional fields left as ``None`` do not override the YAML defaults.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    # HTTP Client
    http_timeout: int = 30
    http_max_connections: int = 20
    http_retry_attempts: int = 3

    # Config file path
    config_file: str = "config.yaml"

    # Machine options
    draft_max_iterations: Optional[int] = None
    thought_max_iterations: Optional[int] = None
    confidence_threshold: Optional[float] = None
    min_confidence_growth: Optional[float] = None
    min_revision_confidence: Optional[float] = None
    context_window: Optional[int] = None
    branching_enabled: Optional[bool] = None
    parallel_processing: Optional[bool] = None
    storage_path: Optional[str] = None
    response_verbosity: Optional[Verbosity] = None

    # Debug toggles
    enable_error_capture: Optional[bool] = None
    enable_metric_tracking: Optional[bool] = None
    enable_performance_monitoring: Optional[bool] = None
    enable_tool_debug: Optional[bool] = None

    # Collaborators
    coherence_api_key: str = ""
    coherence_check_model: str = ""
    coherence_api_base: Optional[str] = None
    embedding_api_key: str = ""
    embedding_model: Optional[str] = None
    embedding_api_url: Optional[str] = None


# env field -> (section, key) targets in ServerConfig
_ENV_TARGETS = {
    "draft_max_iterations": [("draft", "max_drafts")],
    "thought_max_iterations": [("thought", "max_depth")],
    "confidence_threshold": [("draft", "confidence_threshold"), ("thought", "confidence_threshold")],
    "min_confidence_growth": [("draft", "min_confidence_growth"), ("thought", "min_confidence_growth")],
    "min_revision_confidence": [("draft", "min_revision_confidence"), ("thought", "min_revision_confidence")],
    "context_window": [("draft", "context_window"), ("thought", "context_window")],
    "branching_enabled": [("thought", "branching_enabled")],
    "parallel_processing": [("draft", "parallel_processing"), ("thought", "parallel_processing")],
    "storage_path": [("storage", "path")],
    "response_verbosity": [("service", "verbosity")],
    "enable_error_capture": [("debug", "error_capture")],
    "enable_metric_tracking": [("debug", "metric_tracking")],
    "enable_performance_monitoring": [("debug", "performance_monitoring")],
    "enable_tool_debug": [("debug", "tool_debug")],
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def settings_overrides(settings: Settings) -> Dict[str, Any]:
    """Translate environment settings into a nested override mapping."""
    result: Dict[str, Any] = {}
    for field, targets in _ENV_TARGETS.items():
        value = getattr(settings, field)
        if value is None:
            continue
        for section, key in targets:
            result.setdefault(section, {})[key] = value

    models: Dict[str, Dict[str, Any]] = {}
    if settings.coherence_check_model:
        models.setdefault("coherence_checker", {})["model"] = settings.coherence_check_model
    if settings.coherence_api_base:
        models.setdefault("coherence_checker", {})["api_url"] = (
            settings.coherence_api_base.rstrip("/") + "/chat/completions"
        )
    if settings.embedding_model:
        models.setdefault("embedder", {})["model"] = settings.embedding_model
    if settings.embedding_api_url:
        models.setdefault("embedder", {})["api_url"] = settings.embedding_api_url
    if models:
        result["models"] = models
    return result


def build_config(
    base: ServerConfig,
    settings: Optional[Settings] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ServerConfig:
    """Merge defaults, environment and explicit overrides (in that order)."""
    data = base.model_dump()
    if settings is not None:
        data = _deep_merge(data, settings_overrides(settings))
    if overrides:
        data = _deep_merge(data, overrides)
    return ServerConfig.model_validate(data)


def load_yaml_config(config_path: str = "config.yaml") -> ServerConfig:
    """Load configuration from YAML file."""
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, "r", encoding="utf-8") as f:
        config_data = yaml.safe_load(f) or {}

    return ServerConfig(**config_data)


def load_config(
    settings: Optional[Settings] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ServerConfig:
    """Build the effective configuration for this process."""
    settings = settings or Settings()
    if Path(settings.config_file).exists():
        base = load_yaml_config(settings.config_file)
    else:
        base = ServerConfig()
    return build_config(base, settings, overrides)


def load_prompts(prompt_dir: Optional[str] = None) -> Dict[str, Any]:
    """Load prompt templates from YAML files."""
    prompts = {}
    prompt_path = Path(prompt_dir) if prompt_dir else PACKAGE_DIR / "prompts"

    if not prompt_path.exists():
        return prompts

    for yaml_file in prompt_path.glob("*.yaml"):
        with open(yaml_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            prompts[yaml_file.stem] = data

    return prompts
