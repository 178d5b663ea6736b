"""REST API routes for feed sessions."""

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from trivia_feed.errors import ProfileValidationError
from trivia_feed.models.item import CandidateItem, Outcome
from trivia_feed.session import FeedSession, get_registry
from trivia_feed.sync.coordinator import AppState

logger = structlog.get_logger()
router = APIRouter(prefix="/api")


class OpenSessionRequest(BaseModel):
    user_id: str


class InteractionRequest(BaseModel):
    item_id: str
    outcome: Outcome
    time_spent_ms: int = Field(ge=0)


class CandidatesRequest(BaseModel):
    items: list[CandidateItem]


class AppStateRequest(BaseModel):
    state: AppState


def _require_session(user_id: str) -> FeedSession:
    session = get_registry().get(user_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _feed_payload(session: FeedSession) -> dict:
    return {
        "user_id": session.user_id,
        "position": session.feed.position,
        "phase": session.feed.phase.name.lower(),
        "items": [item.model_dump(mode="json") for item in session.feed.items],
    }


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.post("/sessions")
async def open_session(request: OpenSessionRequest) -> dict:
    """Open (or return) the user's session and run the initial sync load."""
    try:
        session = await get_registry().open(request.user_id)
    except ProfileValidationError as exc:
        logger.warning("session_open_rejected", user_id=request.user_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
    return {"sync_state": session.sync.state.value, **_feed_payload(session)}


@router.delete("/sessions/{user_id}")
async def close_session(user_id: str, logout: bool = False) -> dict:
    """Close a session with a bounded final push; ``logout`` aborts in-flight work first."""
    if not await get_registry().close(user_id, logout=logout):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"user_id": user_id, "closed": True}


@router.get("/sessions/{user_id}/feed")
async def get_feed(user_id: str) -> dict:
    return _feed_payload(_require_session(user_id))


@router.post("/sessions/{user_id}/interactions")
async def record_interaction(user_id: str, request: InteractionRequest) -> dict:
    """Apply an answer or skip to the local profile and return any new feed items."""
    session = _require_session(user_id)
    try:
        interaction, added = session.record(request.item_id, request.outcome, request.time_spent_ms)
    except KeyError:
        raise HTTPException(status_code=404, detail="Item not in feed")
    return {
        "interaction": interaction.model_dump(mode="json"),
        "added": [item.model_dump(mode="json") for item in added],
        "position": session.feed.position,
        "phase": session.feed.phase.name.lower(),
    }


@router.post("/sessions/{user_id}/candidates")
async def add_candidates(user_id: str, request: CandidatesRequest) -> dict:
    session = _require_session(user_id)
    added = session.add_candidates(request.items)
    return {"added": added, "feed_size": len(session.feed.items)}


@router.post("/sessions/{user_id}/app-state")
async def report_app_state(user_id: str, request: AppStateRequest) -> dict:
    session = _require_session(user_id)
    return {"state": request.state.value, "push_triggered": session.set_app_state(request.state)}


@router.get("/sessions/{user_id}/profile")
async def get_profile(user_id: str) -> dict:
    session = _require_session(user_id)
    return {
        "sync_state": session.sync.state.value,
        "profile": session.profile.model_dump(mode="json"),
    }


@router.post("/sessions/{user_id}/replenish")
async def replenish(user_id: str) -> dict:
    """Ask the question generator for fresh candidates."""
    session = _require_session(user_id)
    if session.generator is None:
        raise HTTPException(status_code=503, detail="Question generation is not configured")
    return {"added": await session.replenish()}
