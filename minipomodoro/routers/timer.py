"""
Countdown timer: start, stop, read the current state, change the duration.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from minipomodoro.coordinator import SessionCoordinator
from minipomodoro.countdown import format_duration
from minipomodoro.dependencies import get_coordinator, get_session_state
from minipomodoro.errors import AlreadyRunningError
from minipomodoro.state import SessionState

router = APIRouter(prefix="/api/timer", tags=["timer"])


class TimerState(BaseModel):
    id: str
    running: bool
    startTimestamp: Optional[int]
    durationMs: int
    timeLeftMs: int
    elapsedMs: int
    display: str


class DurationRequest(BaseModel):
    duration_ms: int


def _timer_state(coordinator: SessionCoordinator, state: SessionState) -> TimerState:
    duration = coordinator.duration_ms
    if coordinator.is_running and state.time_left_ms is not None:
        time_left = state.time_left_ms
        elapsed = state.elapsed_ms or 0
    else:
        time_left = duration
        elapsed = 0
    return TimerState(
        id=coordinator.timer_id,
        running=coordinator.is_running,
        startTimestamp=coordinator.start_timestamp,
        durationMs=duration,
        timeLeftMs=time_left,
        elapsedMs=elapsed,
        display=format_duration(time_left),
    )


@router.get("", response_model=TimerState)
async def get_timer(
    coordinator: SessionCoordinator = Depends(get_coordinator),
    state: SessionState = Depends(get_session_state),
):
    """Current countdown state as last reported by the engine."""
    return _timer_state(coordinator, state)


@router.post("/start", response_model=TimerState)
async def start_timer(
    coordinator: SessionCoordinator = Depends(get_coordinator),
    state: SessionState = Depends(get_session_state),
):
    """Start the countdown. The start timestamp is saved so a reload can resume it."""
    try:
        coordinator.start_timer()
    except AlreadyRunningError:
        raise HTTPException(status_code=409, detail="Countdown already running")
    return _timer_state(coordinator, state)


@router.post("/stop", response_model=TimerState)
async def stop_timer(
    coordinator: SessionCoordinator = Depends(get_coordinator),
    state: SessionState = Depends(get_session_state),
):
    """Stop the countdown. Stopping an idle timer is fine."""
    coordinator.stop_timer()
    return _timer_state(coordinator, state)


@router.put("/duration", response_model=TimerState)
async def set_duration(
    req: DurationRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
    state: SessionState = Depends(get_session_state),
):
    """Set the length of the next countdown. Not allowed while one is running."""
    try:
        coordinator.duration_ms = req.duration_ms
    except AlreadyRunningError:
        raise HTTPException(status_code=409, detail="Stop the countdown before changing its duration")
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _timer_state(coordinator, state)
