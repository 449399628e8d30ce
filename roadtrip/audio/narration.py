"""Narration queue: one playback resource, most recent request wins.

Every ``speak()`` call returns a future. Stale requests that are superseded
before or during playback resolve with ``None`` and make no sound. A
request rejects only when neither the cloud voice nor the local fallback
voice could speak it.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from audio.audio_player import AudioPlayer


class NarrationUnavailableError(RuntimeError):
    """Neither the primary nor the fallback voice could speak."""


@dataclass
class NarrationRequest:
    text: str
    voice: Optional[str]
    future: asyncio.Future


def _settle(future: asyncio.Future, error: Optional[BaseException] = None) -> None:
    if future.done():
        return
    if error is None:
        future.set_result(None)
    else:
        future.set_exception(error)


class NarrationQueue:
    """Serializes narration onto the single playback resource.

    Lifecycle: construct, then ``speak()`` / ``stop()`` as needed, and
    ``dispose()`` at shutdown. Only this object touches the player.
    """

    def __init__(
        self,
        cloud_speech,
        local_speech,
        player_factory: Callable[[], AudioPlayer] = AudioPlayer,
    ):
        self.cloud_speech = cloud_speech
        self.local_speech = local_speech
        self._player_factory = player_factory
        self._player: Optional[AudioPlayer] = None

        self._backlog: list[NarrationRequest] = []
        self._processing = False
        self._worker: Optional[asyncio.Task] = None
        self._active: Optional[NarrationRequest] = None
        self._active_task: Optional[asyncio.Task] = None
        self._disposed = False

        self.fallbacks_used = 0

    @property
    def player(self) -> AudioPlayer:
        # Created on first use and never recreated (see AudioPlayer)
        if self._player is None:
            self._player = self._player_factory()
            logger.info("[NARRATE] Playback resource created.")
        return self._player

    @property
    def is_speaking(self) -> bool:
        return self._active is not None

    @property
    def pending(self) -> int:
        return len(self._backlog)

    def speak(self, text: str, voice: Optional[str] = None) -> asyncio.Future:
        """Queue text for narration. The returned future resolves when this
        narration finished or was superseded."""
        future = asyncio.get_event_loop().create_future()
        if self._disposed:
            future.set_exception(RuntimeError("Narration queue has been disposed."))
            return future
        if not text or not text.strip():
            future.set_result(None)
            return future

        self._backlog.append(NarrationRequest(text=text, voice=voice, future=future))

        # Whoever calls last wins, including over an in-flight narration
        if self._active_task is not None and not self._active_task.done():
            logger.debug("[NARRATE] Superseding active narration.")
            self._active_task.cancel()
            if self._player is not None:
                self._player.interrupt()

        if not self._processing:
            self._processing = True
            self._worker = asyncio.create_task(self._drain())
        return future

    def stop(self) -> None:
        """Cancel all pending and active narration. Idempotent."""
        pending, self._backlog = self._backlog, []
        for request in pending:
            _settle(request.future)

        if self._active is not None:
            _settle(self._active.future)
        if self._active_task is not None and not self._active_task.done():
            self._active_task.cancel()

        if self._player is not None:
            self._player.interrupt()
            self._player.release_source()

        if pending:
            logger.info("[NARRATE] Stopped; {} queued narration(s) dropped.", len(pending))

    async def dispose(self) -> None:
        """Stop everything and release the playback resource."""
        self.stop()
        self._disposed = True
        worker = self._worker
        if worker is not None and not worker.done():
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        if self._player is not None:
            self._player.close()

    async def _drain(self) -> None:
        try:
            while self._backlog:
                request = self._backlog.pop()
                stale, self._backlog = self._backlog, []
                for item in stale:
                    _settle(item.future)
                if stale:
                    logger.debug("[NARRATE] Dropped {} stale narration(s).", len(stale))
                await self._run(request)
        finally:
            self._processing = False
            if self._disposed:
                for item in self._backlog:
                    _settle(item.future)
                self._backlog = []

    async def _run(self, request: NarrationRequest) -> None:
        task = asyncio.create_task(self._narrate(request.text, request.voice))
        self._active = request
        self._active_task = task
        try:
            await asyncio.wait({task})
        finally:
            self._active = None
            self._active_task = None

        if task.cancelled():
            _settle(request.future)
        elif task.exception() is not None:
            logger.error("[NARRATE] {}", task.exception())
            _settle(request.future, task.exception())
        else:
            _settle(request.future)

    async def _narrate(self, text: str, voice: Optional[str]) -> None:
        try:
            audio = await self.cloud_speech.synthesize(text, voice=voice, response_format="wav")
            await self.player.play(audio, suffix=".wav")
            logger.info("[NARRATE] Spoke: '{}'", text[:60])
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("[NARRATE] Cloud narration failed ({}); using local voice.", e)

        self.fallbacks_used += 1
        try:
            audio = await self.local_speech.synthesize(text)
            await self.player.play(audio, suffix=".wav")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise NarrationUnavailableError(f"No voice could speak the narration: {e}") from e
        logger.info("[NARRATE] Spoke (local voice): '{}'", text[:60])
