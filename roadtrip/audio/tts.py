import asyncio
import time
from typing import Optional

from loguru import logger

from core.config import ConfigManager, ConfigurationError

VALID_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


class SpeechSynthesisError(RuntimeError):
    """The speech provider returned no usable audio."""


class CloudSpeech:
    """Text-to-speech using the OpenAI speech API.

    Primary narration path. Returns complete audio bytes; mp3 for HTTP
    clients, wav for local playback.
    """

    def __init__(self, config_manager: ConfigManager, timeout: float = 15.0):
        self.config_manager = config_manager
        self.timeout = timeout
        self._client = None
        self._client_key: Optional[str] = None

    def _ensure_client(self, api_key: str):
        # Recreate the client if the key changed via the settings API
        if self._client is None or self._client_key != api_key:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
            self._client_key = api_key

    def resolve_voice(self, voice: Optional[str]) -> str:
        if voice in VALID_VOICES:
            return voice
        default = self.config_manager.config.narration.voice
        return default if default in VALID_VOICES else "nova"

    async def synthesize(
        self, text: str, voice: Optional[str] = None, response_format: str = "mp3"
    ) -> bytes:
        """Synthesize text to audio bytes.

        Raises:
            MissingCredentialError: no speech credential configured.
            ConfigurationError: the provider rejected the credential.
            SpeechSynthesisError: empty text or empty audio.
            asyncio.TimeoutError and SDK transport errors.
        """
        if not text or not text.strip():
            raise SpeechSynthesisError("text is required")

        api_key = self.config_manager.require_api_key("openai")
        self._ensure_client(api_key)

        import openai

        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.audio.speech.create(
                    model=self.config_manager.config.narration.tts_model,
                    voice=self.resolve_voice(voice),
                    input=text,
                    response_format=response_format,
                ),
                timeout=self.timeout,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ConfigurationError("OpenAI rejected the configured credential") from e

        audio = response.content
        if not audio:
            raise SpeechSynthesisError("Speech provider returned no audio")

        logger.debug("[TIMING] Cloud TTS: {:.1f}s, {} bytes for '{}'",
                     time.monotonic() - t0, len(audio), text[:50])
        return audio
