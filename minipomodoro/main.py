"""
Mini Pomodoro – Backend API
Start with: uvicorn minipomodoro.main:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from minipomodoro.config import Settings, get_settings
from minipomodoro.coordinator import SessionCoordinator
from minipomodoro.countdown import CountdownEngine
from minipomodoro.errors import PersistenceError
from minipomodoro.notifications import AlertChannel, CompletionAnnouncer
from minipomodoro.routers import alerts, distractions, timer
from minipomodoro.state import SessionState
from minipomodoro.store import PersistentStore

logger = logging.getLogger(__name__)


def build_coordinator(settings: Settings, state: SessionState) -> SessionCoordinator:
    engine = CountdownEngine(settings.duration_ms, tick_size_ms=settings.tick_size_ms)
    return SessionCoordinator(
        PersistentStore(settings.data_dir),
        engine,
        timer_id=settings.timer_id,
        list_id=settings.list_id,
        store_name=settings.store_name,
        view=state,
        alerts=AlertChannel(),
        announcer=CompletionAnnouncer(hook=state.announce),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        state = SessionState()
        coordinator = build_coordinator(settings, state)
        app.state.session_state = state
        app.state.coordinator = coordinator
        app.state.open_error = None
        try:
            await coordinator.open()
        except PersistenceError as exc:
            logger.error("could not open the session store: %s", exc)
            app.state.open_error = str(exc)
        try:
            yield
        finally:
            await coordinator.close()
            logger.info("session closed")

    app = FastAPI(
        title="Mini Pomodoro API",
        description="Resumable Pomodoro timer with a distraction list",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Allow the local front end to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(timer.router)
    app.include_router(distractions.router)
    app.include_router(alerts.router)

    @app.get("/health")
    def health():
        """Check that the API is running. Frontend can call this first."""
        return {"status": "ok", "message": "Mini Pomodoro API is running"}

    @app.get("/")
    def root():
        """Root welcome."""
        return {"app": "Mini Pomodoro", "docs": "/docs"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("minipomodoro.main:app", host="127.0.0.1", port=8000)
