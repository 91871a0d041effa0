"""FastAPI tool-call adapter."""
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp
from fastapi import APIRouter, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import ServerConfig, Settings, Verbosity, load_config, load_prompts
from .core import (
    CoherenceChecker,
    DebugControl,
    DraftRefinementMachine,
    Embedder,
    Integrator,
    ModelClient,
    ProcessingError,
    Scorer,
    SessionStore,
    ThoughtChainMachine,
    build_coherence_checker,
    build_embedder,
    project_draft,
    project_integrated,
    project_thought,
)
from .models import DraftRequest, IntegratedRequest, SetFeatureRequest, ThoughtRequest
from .utils import setup_logging, get_logger

logger = get_logger(__name__)

router = APIRouter()

TOOLS = [
    {
        "name": "chain-of-draft",
        "path": "/v1/tools/chain-of-draft",
        "description": "Score and persist one draft of an initial/critique/revision/final cycle",
    },
    {
        "name": "sequential-thinking",
        "path": "/v1/tools/sequential-thinking",
        "description": "Score one thought of a sequential chain, with revisions and branches",
    },
    {
        "name": "integrated-thinking",
        "path": "/v1/tools/integrated-thinking",
        "description": "Process a thought and a draft together and fuse their confidence",
    },
    {
        "name": "set-feature",
        "path": "/v1/tools/set-feature",
        "description": "Enable or disable debug features at runtime",
    },
]


def _verbosity(request: Request, verbosity: Optional[Verbosity]) -> Verbosity:
    return verbosity or request.app.state.config.service.verbosity


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": request.app.state.config.service.name,
        "version": __version__,
    }


@router.get("/v1/tools")
async def list_tools():
    """List available tools."""
    return {"data": TOOLS, "object": "list"}


@router.post("/v1/tools/chain-of-draft")
async def chain_of_draft(
    params: DraftRequest,
    request: Request,
    x_session_id: str = Header(default="default"),
    verbosity: Optional[Verbosity] = Query(default=None),
):
    """Submit one draft."""
    state = request.app.state
    record = await state.drafts.submit_draft(x_session_id, params)
    return project_draft(record, _verbosity(request, verbosity), state.debug.metric_tracking)


@router.post("/v1/tools/sequential-thinking")
async def sequential_thinking(
    params: ThoughtRequest,
    request: Request,
    x_session_id: str = Header(default="default"),
    verbosity: Optional[Verbosity] = Query(default=None),
):
    """Submit one thought."""
    state = request.app.state
    result = await state.thoughts.submit_thought(x_session_id, params)
    return project_thought(result, _verbosity(request, verbosity), state.debug.metric_tracking)


@router.post("/v1/tools/integrated-thinking")
async def integrated_thinking(
    params: IntegratedRequest,
    request: Request,
    x_session_id: str = Header(default="default"),
    verbosity: Optional[Verbosity] = Query(default=None),
):
    """Submit one integrated turn."""
    state = request.app.state
    result = await state.integrator.process(x_session_id, params)
    return project_integrated(result, _verbosity(request, verbosity), state.debug.metric_tracking)


@router.post("/v1/tools/set-feature")
async def set_feature(params: SetFeatureRequest, request: Request):
    """Toggle a debug feature."""
    debug: DebugControl = request.app.state.debug
    return {"state": debug.set_feature(params.feature, params.enabled)}


@router.delete("/v1/sessions/{session_id}")
async def close_session(
    session_id: str,
    request: Request,
    purge: bool = Query(default=False),
):
    """Evict a session's in-memory state, optionally deleting its drafts."""
    await request.app.state.integrator.close_session(session_id, purge_drafts=purge)
    return {"session_id": session_id, "closed": True, "purged": purge}


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "status": "failed"},
    )


def create_app(
    settings: Optional[Settings] = None,
    config: Optional[ServerConfig] = None,
    embedder: Optional[Embedder] = None,
    coherence: Optional[CoherenceChecker] = None,
) -> FastAPI:
    """Build the application; collaborators may be injected."""
    settings = settings or Settings()
    config = config or load_config(settings)
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logger.info(
            "app_startup",
            host=settings.host,
            port=settings.port,
            storage=config.storage.path,
        )

        connector = aiohttp.TCPConnector(
            limit=settings.http_max_connections,
            limit_per_host=settings.http_max_connections
        )
        http_session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=settings.http_timeout)
        )
        client = ModelClient(
            http_session,
            timeout=settings.http_timeout,
            retry_attempts=settings.http_retry_attempts,
        )

        scorer = Scorer(
            embedder or build_embedder(client, settings, config),
            coherence or build_coherence_checker(client, settings, config, load_prompts()),
        )
        store = SessionStore(config.storage.path)
        await store.initialize()

        debug = DebugControl(config.debug)
        drafts = DraftRefinementMachine(
            store,
            scorer,
            config.draft,
            config.enhancement,
            debug,
            history_window=config.storage.recent_window,
        )
        thoughts = ThoughtChainMachine(scorer, config.thought, config.enhancement, debug)

        app.state.config = config
        app.state.http_session = http_session
        app.state.store = store
        app.state.debug = debug
        app.state.drafts = drafts
        app.state.thoughts = thoughts
        app.state.integrator = Integrator(thoughts, drafts, scorer, config, debug)

        try:
            yield
        finally:
            await store.close()
            await http_session.close()
            logger.info("app_shutdown")

    app = FastAPI(
        title="Thought Server",
        description=config.service.description,
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProcessingError)
    async def processing_error_handler(request: Request, exc: ProcessingError):
        logger.warning(
            "tool_call_failed",
            path=request.url.path,
            kind=exc.kind,
            phase=exc.phase,
            error=exc.message,
        )
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return _error_response(400, f"Invalid parameters: {details}")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.exception("unhandled_error", path=request.url.path, error=str(exc))
        return _error_response(500, "Internal server error")

    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = Settings()
    uvicorn.run(
        "thought_server.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run()
