from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from solsniff import __version__, services
from solsniff.config import get_settings
from solsniff.db import init_db
from solsniff.models import IdeaCategory, SignalSource
from solsniff.pipeline import AnalysisPipeline
from solsniff.schemas import (
    AnalysisStatusOut,
    AnalyzeAccepted,
    HealthOut,
    IdeaOut,
    NarrativeDetail,
    NarrativeSummary,
    SignalPage,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    init_db(settings.database_path)
    state: services.AnalysisState = app.state.analysis
    startup_task = None
    if not services.restore_latest(state) and settings.run_on_startup:
        log.info("No stored analysis, starting initial run")
        startup_task = asyncio.create_task(
            services.run_analysis(state, app.state.pipeline_factory)
        )
    yield
    if startup_task is not None and not startup_task.done():
        startup_task.cancel()


app = FastAPI(
    title="SolSniff",
    version=__version__,
    description=(
        "Solana ecosystem narrative detection API. Collects onchain, developer, "
        "social and news signals, detects narratives with an LLM and proposes "
        "build ideas. All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Service liveness and cache status."},
        {"name": "Narratives", "description": "Detected narratives from the latest analysis."},
        {"name": "Ideas", "description": "Build ideas generated per narrative."},
        {"name": "Signals", "description": "Ranked signals from the latest collection pass."},
        {"name": "Analysis", "description": "Trigger and monitor analysis runs. Requires an LLM API key."},
    ],
)

app.state.analysis = services.AnalysisState()
app.state.pipeline_factory = AnalysisPipeline

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().cors_origin],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def analysis_state(request: Request) -> services.AnalysisState:
    return request.app.state.analysis


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=HealthOut, tags=["Health"], summary="Service health")
async def health(state: services.AnalysisState = Depends(analysis_state)):
    return HealthOut(
        status="ok",
        version=__version__,
        last_analyzed_at=state.last_analyzed_at,
        cached_narratives=len(state.result.narratives) if state.result else 0,
        is_analyzing=state.is_analyzing,
    )


# ---------------------------------------------------------------------------
# Routes: Narratives
# ---------------------------------------------------------------------------


@app.get("/api/narratives", response_model=list[NarrativeSummary],
         tags=["Narratives"], summary="List detected narratives")
async def list_narratives(state: services.AnalysisState = Depends(analysis_state)):
    if state.result is None:
        return []
    return [services.narrative_summary(n) for n in state.result.narratives]


@app.get("/api/narratives/{key}", response_model=NarrativeDetail,
         tags=["Narratives"], summary="Get a narrative by slug or id")
async def get_narrative(key: str, state: services.AnalysisState = Depends(analysis_state)):
    narrative = services.find_narrative(state.result, key)
    if narrative is None:
        raise HTTPException(404, "Narrative not found")
    return services.narrative_detail(narrative)


# ---------------------------------------------------------------------------
# Routes: Ideas & Signals
# ---------------------------------------------------------------------------


@app.get("/api/ideas", response_model=list[IdeaOut],
         tags=["Ideas"], summary="List build ideas, best first")
async def list_ideas(
    category: IdeaCategory | None = Query(None),
    state: services.AnalysisState = Depends(analysis_state),
):
    return services.list_ideas(state.result, category)


@app.get("/api/signals", response_model=SignalPage,
         tags=["Signals"], summary="Paginated ranked signals")
async def list_signals(
    source: SignalSource | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    state: services.AnalysisState = Depends(analysis_state),
):
    return services.page_signals(state.result, source, page, page_size)


# ---------------------------------------------------------------------------
# Routes: Analysis
# ---------------------------------------------------------------------------


@app.get("/api/analysis/status", response_model=AnalysisStatusOut,
         tags=["Analysis"], summary="Current analysis status")
async def analysis_status(state: services.AnalysisState = Depends(analysis_state)):
    result = state.result
    return AnalysisStatusOut(
        is_analyzing=state.is_analyzing,
        last_analyzed_at=state.last_analyzed_at,
        last_error=state.last_error,
        errors=result.errors if result else [],
        metadata=result.metadata if result else None,
    )


@app.post("/api/analyze", response_model=AnalyzeAccepted, status_code=202,
          tags=["Analysis"], summary="Start a new analysis run")
async def analyze(
    request: Request,
    background_tasks: BackgroundTasks,
    state: services.AnalysisState = Depends(analysis_state),
) -> Any:
    if not state.try_begin():
        raise HTTPException(409, "Analysis already in progress")
    background_tasks.add_task(services.execute_analysis, state, request.app.state.pipeline_factory)
    return AnalyzeAccepted()


def main():
    import uvicorn
    settings = get_settings()
    uvicorn.run("solsniff.app:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
