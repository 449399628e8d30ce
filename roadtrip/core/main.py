import asyncio
from pathlib import Path

from loguru import logger

from api.middleware.auth import pin_configured
from audio.local_speech import LocalSpeech
from audio.narration import NarrationQueue
from audio.tts import CloudSpeech
from core.config import ConfigManager
from core.state import SharedState
from facts.acquisition import FactAcquisitionOrchestrator
from facts.generator import FactGenerator
from facts.verifier import build_verifier
from llm.base import LLMRouter
from trip.geocoder import ReverseGeocoder
from trip.positions import PositionFeed
from trip.session import TripController

# Base directory for the roadtrip package
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
MODELS_DIR = BASE_DIR / "models"


class NarratorApp:
    """Wires the narration pipeline together and runs the API server."""

    def __init__(self, config_manager: ConfigManager = None, state: SharedState = None):
        self.config_manager = config_manager or ConfigManager(DATA_DIR)
        self.state = state or SharedState()

        config = self.config_manager.config
        timeout = config.facts.request_timeout_seconds

        self.router = LLMRouter(self.config_manager, timeout=timeout)
        self.generator = FactGenerator(self.router, timeout=timeout)
        self.verifier = build_verifier(
            self.router,
            config.facts.verification_mode,
            self.config_manager.verification_threshold,
            timeout=timeout,
        )
        self.acquirer = FactAcquisitionOrchestrator(
            self.generator, self.verifier, max_attempts=config.facts.max_attempts
        )

        self.cloud_speech = CloudSpeech(self.config_manager, timeout=timeout)
        self.local_speech = LocalSpeech(
            MODELS_DIR / "tts", preferred_voices=config.narration.fallback_voices
        )
        self.narration = NarrationQueue(self.cloud_speech, self.local_speech)

        self.positions = PositionFeed()
        self.geocoder = ReverseGeocoder(self.config_manager)
        self.trips = TripController(
            acquirer=self.acquirer,
            narration=self.narration,
            geocoder=self.geocoder,
            positions=self.positions,
            state=self.state,
            config=config.triggers,
        )
        self._server = None

    def apply_fact_settings(self) -> None:
        """Rebuild the verifier after verification settings changed."""
        facts = self.config_manager.config.facts
        self.verifier = build_verifier(
            self.router,
            facts.verification_mode,
            self.config_manager.verification_threshold,
            timeout=facts.request_timeout_seconds,
        )
        self.acquirer.verifier = self.verifier
        self.acquirer.max_attempts = facts.max_attempts
        logger.info("[VERIFY] Verification mode: {} (threshold {})",
                    facts.verification_mode, self.verifier.threshold)

    async def start(self):
        """Boot sequence: start the API server and wait for shutdown."""
        logger.info("=== Road Trip Narrator starting ===")

        config = self.config_manager.config
        self.state.active_provider = config.provider

        if not self.config_manager.has_generation_credentials:
            logger.warning("No credential for provider '{}'. Facts will fall back.",
                           config.provider)
        if not self.config_manager.has_speech_credentials:
            logger.warning("No speech credential. Narration will use the local voice.")
        if not pin_configured(self.config_manager):
            logger.warning("No settings PIN set. Settings are open to the local network.")

        await self._start_api_server()

        # Load the fallback voice up front so the first fallback is not slow
        await self.local_speech.load()

        logger.info("=== Narrator is ready. ===")
        await self.state.stop_event.wait()

    async def _start_api_server(self):
        """Start the FastAPI server in the background."""
        from api.server import create_app

        app = create_app(self.config_manager, self.state, self)

        import uvicorn
        server_config = self.config_manager.config.server
        server = uvicorn.Server(uvicorn.Config(
            app, host=server_config.host, port=server_config.port, log_level="warning"
        ))
        self._server = server
        asyncio.create_task(server.serve())
        logger.info("API server started on port {}", server_config.port)

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down...")
        self.state.request_stop()
        await self.trips.end_trip()
        await self.narration.dispose()
        if self._server is not None:
            self._server.should_exit = True
        logger.info("Shutdown complete.")


def main():
    """Entry point."""
    import sys
    from loguru import logger as log

    log.remove()
    log.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")
    log.add(DATA_DIR / "narrator.log", rotation="10 MB", retention="7 days", level="DEBUG")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    app = NarratorApp()
    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        loop.run_until_complete(app.shutdown())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
