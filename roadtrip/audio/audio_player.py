import asyncio
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from loguru import logger


class PlaybackError(RuntimeError):
    """The player could not play a clip."""


class AudioPlayer:
    """The single playback resource, backed by PipeWire/PulseAudio (paplay).

    Platform invariant: this handle is created once, lazily, on the first
    narration and then reused for the whole session. Output devices that
    need an initial user-initiated activation (Bluetooth car kits, mobile
    browsers proxying the stream) stay usable only while the same handle is
    kept. Never construct a second one per clip.

    Each clip is written to a transient source file. The previous file is
    deleted as soon as a new clip replaces it, or on stop.
    """

    def __init__(self, command: str = "paplay", timeout: float = 60.0):
        self.command = command
        self.timeout = timeout
        self.clips_played = 0
        self._current_process: subprocess.Popen | None = None
        self._current_source: Optional[Path] = None
        self._generation = 0  # bumped on interrupt so queued clips don't start

    async def play(self, audio: bytes, suffix: str = ".wav") -> None:
        """Play audio bytes through the speaker and wait until done.

        Raises:
            PlaybackError: empty audio, missing player, or player failure.
        """
        if not audio:
            raise PlaybackError("No audio to play.")

        source = self._replace_source(audio, suffix)
        generation = self._generation
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._play_sync, source, generation)

    def _replace_source(self, audio: bytes, suffix: str) -> Path:
        self.release_source()
        fd, name = tempfile.mkstemp(prefix="narration-", suffix=suffix)
        with os.fdopen(fd, "wb") as f:
            f.write(audio)
        self._current_source = Path(name)
        return self._current_source

    def release_source(self) -> None:
        """Delete the current transient audio source, if any."""
        source, self._current_source = self._current_source, None
        if source is not None:
            try:
                source.unlink(missing_ok=True)
            except OSError as e:
                logger.debug("Could not remove audio source {}: {}", source, e)

    def _play_sync(self, source: Path, generation: int) -> None:
        """Synchronous playback using paplay."""
        if generation != self._generation:
            return
        try:
            proc = subprocess.Popen(
                [self.command, str(source)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise PlaybackError(f"{self.command} not found. Install pulseaudio-utils.") from e

        # Only the current generation owns _current_process
        if generation == self._generation:
            self._current_process = proc
        else:
            proc.kill()
        try:
            proc.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            proc.kill()
            raise PlaybackError(f"Audio playback timed out ({self.timeout:.0f}s)") from e
        finally:
            if generation == self._generation and self._current_process is proc:
                self._current_process = None

        # -9: killed by interrupt(), which is a stop, not a failure
        if proc.returncode not in (0, -9):
            stderr = proc.stderr.read().decode().strip() if proc.stderr else ""
            raise PlaybackError(f"{self.command} error ({proc.returncode}): {stderr}")
        if proc.returncode == 0:
            self.clips_played += 1

    def interrupt(self) -> None:
        """Stop any currently playing audio immediately."""
        self._generation += 1
        proc = self._current_process
        if proc is not None:
            try:
                proc.kill()
                logger.info("Audio playback stopped (killed {}).", self.command)
            except Exception as e:
                logger.debug("Error killing {}: {}", self.command, e)
            self._current_process = None

    def close(self):
        self.interrupt()
        self.release_source()
