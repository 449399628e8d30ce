import asyncio
import io
import wave
from pathlib import Path
from typing import Optional

import numpy as np
from loguru import logger


class SpeechUnavailableError(RuntimeError):
    """No local voice is installed or loadable."""


def select_voice(available: list[str], preferred: list[str]) -> Optional[str]:
    """Pick the first available voice whose name contains a preferred name.

    Falls back to the first installed voice when nothing matches.
    """
    for wanted in preferred:
        for name in available:
            if wanted.lower() in name.lower():
                return name
    return available[0] if available else None


class LocalSpeech:
    """Fallback text-to-speech using Piper voices installed on the device.

    Used only when cloud synthesis or its playback fails.
    """

    def __init__(
        self,
        model_dir: Path,
        preferred_voices: Optional[list[str]] = None,
        sample_rate: int = 22050,
    ):
        self.model_dir = model_dir
        self.preferred_voices = preferred_voices or []
        self.sample_rate = sample_rate
        self.voice: Optional[str] = None
        self._piper = None
        self._load_attempted = False

    @property
    def is_available(self) -> bool:
        return self._piper is not None

    def installed_voices(self) -> list[str]:
        if not self.model_dir.exists():
            return []
        return sorted(p.name[: -len(".onnx")] for p in self.model_dir.glob("*.onnx"))

    async def load(self):
        """Load the preferred Piper voice model."""
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._load_sync)

    def _load_sync(self):
        self._load_attempted = True
        voice = select_voice(self.installed_voices(), self.preferred_voices)
        if voice is None:
            logger.warning("No Piper voice models found in {}. Local fallback disabled.",
                           self.model_dir)
            return
        try:
            from piper import PiperVoice

            model_path = self.model_dir / f"{voice}.onnx"
            config_path = self.model_dir / f"{voice}.onnx.json"
            self._piper = PiperVoice.load(str(model_path), config_path=str(config_path))
            self.voice = voice
            config = getattr(self._piper, "config", None)
            self.sample_rate = getattr(config, "sample_rate", self.sample_rate)
            logger.info("Piper fallback voice loaded: {}", voice)
        except ImportError:
            logger.warning("piper-tts not installed. Local fallback unavailable.")
        except Exception as e:
            logger.error("Failed to load Piper voice {}: {}", voice, e)

    async def synthesize(self, text: str) -> bytes:
        """Synthesize text to WAV audio bytes.

        Raises:
            SpeechUnavailableError: no voice could be loaded.
        """
        if not text or not text.strip():
            return b""
        if not self._load_attempted:
            await self.load()
        if self._piper is None:
            raise SpeechUnavailableError("No local voice available")

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._synthesize_sync, text)

    def _synthesize_sync(self, text: str) -> bytes:
        # Piper yields AudioChunk objects with float32 samples in [-1, 1]
        all_audio = []
        for chunk in self._piper.synthesize(text):
            audio_int16 = (chunk.audio_float_array * 32767).astype(np.int16)
            all_audio.append(audio_int16)

        if not all_audio:
            raise SpeechUnavailableError(f"Piper produced no audio for '{text[:50]}'")

        audio_data = np.concatenate(all_audio)

        wav_buffer = io.BytesIO()
        with wave.open(wav_buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)  # 16-bit
            wav.setframerate(self.sample_rate)
            wav.writeframes(audio_data.tobytes())

        audio_bytes = wav_buffer.getvalue()
        logger.debug("Local TTS: synthesized {} bytes for '{}'", len(audio_bytes), text[:50])
        return audio_bytes
