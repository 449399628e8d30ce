from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from core.config import ConfigManager
from core.state import SharedState


def create_app(config_manager: ConfigManager, state: SharedState, narrator) -> FastAPI:
    """Create and configure the FastAPI application.

    ``narrator`` carries the wired components (acquirer, verifier, speech,
    narration queue, position feed, trip controller).
    """

    app = FastAPI(title="Road Trip Narrator", version="1.0.0")

    # The companion UI runs on a phone or tablet on the same network
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store references for route handlers
    app.state.config_manager = config_manager
    app.state.shared_state = state
    app.state.narrator = narrator

    from api.routes.facts import router as facts_router
    from api.routes.settings import router as settings_router
    from api.routes.trip import router as trip_router

    app.include_router(facts_router, prefix="/api", tags=["facts"])
    app.include_router(trip_router, prefix="/api/trip", tags=["trip"])
    app.include_router(settings_router, prefix="/api/settings", tags=["settings"])

    @app.get("/api/health")
    async def health():
        config = config_manager.config
        return {
            "status": "ok",
            "state": state.narrator_state.value,
            "provider": config.provider,
            "verification_mode": config.facts.verification_mode,
            "trip_active": state.trip_active,
        }

    # MUST be mounted AFTER all API routes, "/" catches everything
    static_dir = Path(__file__).resolve().parent.parent / "static"
    if static_dir.exists():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    return app
