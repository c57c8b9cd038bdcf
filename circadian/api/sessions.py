"""Manual pipeline runs, bypassing the scheduler."""

import asyncio
import uuid

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from circadian.core.logging import get_logger
from circadian.core.rate_limit import MANUAL_RUN_LIMIT, limiter
from circadian.dependencies import AppSettings, DBSession, Engine, Registry
from circadian.models.user import User
from circadian.pipeline.errors import UnknownSessionTypeError

logger = get_logger(__name__)

router = APIRouter()


class SessionInfo(BaseModel):
    session_type: str
    category: str
    steps: list[str]
    notifies: bool
    description: str


class RunSessionRequest(BaseModel):
    user_id: uuid.UUID


class RunSessionResponse(BaseModel):
    success: bool
    produced: bool = False
    output_id: uuid.UUID | None = None
    title: str | None = None
    reason: str | None = None
    error: str | None = None


@router.get("/sessions", response_model=list[SessionInfo])
async def list_sessions(registry: Registry) -> list[SessionInfo]:
    """List registered session types and their steps."""
    return [SessionInfo(**d) for d in registry.describe()]


@router.post("/sessions/{session_type}/run", response_model=RunSessionResponse)
@limiter.limit(MANUAL_RUN_LIMIT)
async def run_session(
    request: Request,
    session_type: str,
    body: RunSessionRequest,
    db: DBSession,
    registry: Registry,
    engine: Engine,
    settings: AppSettings,
) -> RunSessionResponse:
    """
    Run one session pipeline for a user right now.

    No job row is created and the user's feature flag is not consulted.
    Pipeline failures are reported in the response body, not as HTTP errors.
    """
    try:
        definition = registry.get(session_type)
    except UnknownSessionTypeError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    if await db.get(User, body.user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    log = logger.bind(session_type=session_type, user_id=str(body.user_id))
    try:
        outcome = await asyncio.wait_for(
            engine.run(db, definition, body.user_id),
            timeout=settings.pipeline_timeout_seconds,
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
        log.bind(error=error).error("manual_session_failed")
        return RunSessionResponse(success=False, error=error)

    log.bind(produced=outcome.produced).info("manual_session_completed")
    return RunSessionResponse(
        success=True,
        produced=outcome.produced,
        output_id=outcome.output_id,
        title=outcome.title,
        reason=outcome.reason,
    )
