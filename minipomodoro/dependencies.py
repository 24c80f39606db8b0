from fastapi import HTTPException, Request

from minipomodoro.coordinator import SessionCoordinator
from minipomodoro.state import SessionState


def get_coordinator(request: Request) -> SessionCoordinator:
    open_error = getattr(request.app.state, "open_error", None)
    if open_error:
        raise HTTPException(status_code=503, detail=f"Local storage unavailable: {open_error}")
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None or not coordinator.ready:
        raise HTTPException(status_code=503, detail="Session is still loading")
    return coordinator


def get_session_state(request: Request) -> SessionState:
    return request.app.state.session_state
