"""JSON feedback API: signed feedback links, dashboard feedback, run trigger, story listing."""

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.db.connection import SessionFactory, get_session
from src.db.repository import StoryRepository
from src.errors import InvalidFeedbackError, RunInProgressError
from src.logger import get_logger
from src.pipeline.orchestrator import PipelineOrchestrator
from src.scoring.engine import ScoringEngine, to_display_score
from src.services.signing import verify_feedback_signature

logger = get_logger(__name__)

app = FastAPI(title="Insight Tracker", version="0.1")

_orchestrator: PipelineOrchestrator | None = None
_scoring_engine: ScoringEngine | None = None

MAX_PAGE_SIZE = 100


def get_orchestrator() -> PipelineOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PipelineOrchestrator()
    return _orchestrator


def get_scoring_engine() -> ScoringEngine:
    global _scoring_engine
    if _scoring_engine is None:
        _scoring_engine = ScoringEngine()
    return _scoring_engine


def get_session_factory() -> SessionFactory:
    return get_session


class SubmitFeedbackRequest(BaseModel):
    story_id: str | None = Field(default=None, alias="storyId")
    action: str | None = None


def _record(payload: dict) -> dict:
    try:
        result = get_scoring_engine().record_feedback(payload)
    except InvalidFeedbackError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if result is None:
        return {"status": "ok", "message": "Feedback received. Thank you!"}
    return {
        "status": "ok",
        "relevanceScore": result.relevance_score,
        "suppressedUntil": result.suppressed_until.isoformat() if result.suppressed_until else None,
        "message": _summary_text(payload["action"], result.relevance_score, result.suppressed_until),
    }


def _summary_text(action: str, relevance_score: int, suppressed_until) -> str:
    suppression = (
        f"Temporarily snoozed until {suppressed_until.isoformat()}."
        if suppressed_until
        else "Story remains eligible for notifications."
    )
    return f"Saved your feedback ({action}). Current score: {to_display_score(relevance_score)}. {suppression}"


@app.get("/api/feedback")
def signed_feedback(
    story_id: str = Query(default="", alias="storyId"),
    action: str = Query(default=""),
    confidence: str = Query(default="explicit"),
    source: str = Query(default="pushover"),
    ts: int | None = Query(default=None),
    sig: str = Query(default=""),
):
    if not story_id or not action or not ts or not sig:
        raise HTTPException(status_code=400, detail="This feedback link is invalid or missing data.")
    if not verify_feedback_signature(story_id, action, confidence, source, ts, sig):
        logger.warning("feedback_link_rejected", story_id=story_id, action=action, ts=ts)
        raise HTTPException(status_code=410, detail="This feedback link has expired.")

    return _record(
        {"story_id": story_id, "action": action, "confidence": confidence, "source": source}
    )


@app.post("/api/submit-feedback")
def submit_feedback(req: SubmitFeedbackRequest):
    if not req.story_id or not req.action:
        raise HTTPException(status_code=400, detail="Missing storyId or action")
    return _record(
        {"story_id": req.story_id, "action": req.action, "confidence": "explicit", "source": "dashboard"}
    )


def _run_fetch(orchestrator: PipelineOrchestrator) -> None:
    try:
        summary = orchestrator.run()
    except RunInProgressError:
        logger.info("trigger_fetch_busy")
        return
    logger.info("trigger_fetch_done", **summary.model_dump())


@app.post("/api/trigger-fetch")
def trigger_fetch(background_tasks: BackgroundTasks):
    """Start a pipeline pass after the response is sent."""
    orchestrator = get_orchestrator()
    if orchestrator.is_running:
        logger.info("trigger_fetch_busy")
        return JSONResponse(
            status_code=429, content={"status": "busy", "message": "Fetch already running."}
        )
    background_tasks.add_task(_run_fetch, orchestrator)
    return {"status": "ok", "message": "Fetch started."}


@app.get("/api/stories")
def list_stories(
    page: int = Query(default=1),
    limit: int = Query(default=20),
    notification_sent: bool | None = Query(default=None, alias="notificationSent"),
):
    page = max(1, page)
    limit = min(MAX_PAGE_SIZE, max(1, limit))
    with get_session_factory()() as session:
        result = StoryRepository(session).list_page(page, limit, notification_sent)
    return result.model_dump(mode="json")
