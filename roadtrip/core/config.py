import json
import os
import uuid
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field


class ConfigurationError(RuntimeError):
    """Server-side configuration problem (missing or rejected credentials)."""


class MissingCredentialError(ConfigurationError):
    def __init__(self, name: str):
        super().__init__(f"{name} credential is not configured")
        self.name = name


# Environment fallbacks for blank api_keys entries.
CREDENTIAL_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mapbox": "MAPBOX_TOKEN",
}

# Which credential each LLM provider needs.
PROVIDER_CREDENTIALS = {
    "claude": "anthropic",
    "openai": "openai",
    "gemini": "gemini",
}

VERIFICATION_MODES = ("self_assessment", "evidence_search")


class APIKeysConfig(BaseModel):
    anthropic: str = ""
    openai: str = ""
    gemini: str = ""
    mapbox: str = ""


class FactsConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    verification_mode: str = "self_assessment"  # "self_assessment" or "evidence_search"
    self_assessment_threshold: int = Field(default=7, ge=0, le=10)
    # Evidence-backed verdicts already carry an explicit verified flag, so the
    # numeric bar is lower. Deployments have used 5 and 6.
    evidence_threshold: int = Field(default=6, ge=0, le=10)
    request_timeout_seconds: float = 15.0


class TriggerConfig(BaseModel):
    time_threshold_seconds: float = 300.0
    distance_threshold_miles: float = 5.0
    position_debounce_seconds: float = 2.0
    recheck_interval_seconds: float = 30.0
    announcement_gap_seconds: float = 2.0


class NarrationConfig(BaseModel):
    voice: str = "nova"
    tts_model: str = "tts-1"
    # Piper voices tried in order, matched by substring against installed models
    fallback_voices: list[str] = Field(
        default_factory=lambda: ["en_US-amy", "en_US-lessac", "en_US-libritts", "en_GB-alba"]
    )


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    # Salt for the settings PIN hash
    device_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class AppConfig(BaseModel):
    provider: str = "claude"  # "claude", "openai", or "gemini"
    api_keys: APIKeysConfig = Field(default_factory=APIKeysConfig)
    facts: FactsConfig = Field(default_factory=FactsConfig)
    triggers: TriggerConfig = Field(default_factory=TriggerConfig)
    narration: NarrationConfig = Field(default_factory=NarrationConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


class ConfigManager:
    """Manages application configuration with JSON persistence."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.config_path = data_dir / "config.json"
        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self._load()
        return self._config

    def _load(self) -> AppConfig:
        """Load config from disk. Returns defaults if no config exists."""
        if self.config_path.exists():
            try:
                data = json.loads(self.config_path.read_text())
                logger.info("Configuration loaded from {}", self.config_path)
                return AppConfig(**data)
            except Exception as e:
                logger.error("Failed to load config: {}. Using defaults.", e)
        logger.info("No existing config found. Using defaults.")
        return AppConfig()

    def save(self) -> None:
        """Persist current config to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(self.config.model_dump_json(indent=2))
        logger.debug("Configuration saved to {}", self.config_path)

    def update(self, **kwargs) -> AppConfig:
        """Update top-level config fields and save."""
        current = self.config.model_dump()
        for key, value in kwargs.items():
            if key in current:
                if isinstance(current[key], dict) and isinstance(value, dict):
                    current[key].update(value)
                else:
                    current[key] = value
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def update_nested(self, section: str, **kwargs) -> AppConfig:
        """Update fields within a nested config section."""
        current = self.config.model_dump()
        if section in current and isinstance(current[section], dict):
            current[section].update(kwargs)
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def reset(self) -> None:
        """Reset config to defaults."""
        self._config = AppConfig()
        if self.config_path.exists():
            self.config_path.unlink()
        # A new device_id invalidates the stored settings PIN
        pin_path = self.data_dir / "pin.hash"
        if pin_path.exists():
            pin_path.unlink()
        logger.info("Configuration reset to defaults.")

    def api_key(self, name: str) -> str:
        """Return the credential for `name`, falling back to its environment variable.

        Re-read on every call so key updates via the settings API take
        effect without restart.
        """
        value = getattr(self.config.api_keys, name, "")
        if value:
            return value
        env_var = CREDENTIAL_ENV_VARS.get(name)
        return os.environ.get(env_var, "") if env_var else ""

    def require_api_key(self, name: str) -> str:
        value = self.api_key(name)
        if not value:
            raise MissingCredentialError(name)
        return value

    @property
    def provider_credential(self) -> str:
        return PROVIDER_CREDENTIALS.get(self.config.provider, self.config.provider)

    @property
    def has_generation_credentials(self) -> bool:
        return bool(self.api_key(self.provider_credential))

    @property
    def has_speech_credentials(self) -> bool:
        return bool(self.api_key("openai"))

    @property
    def verification_threshold(self) -> int:
        facts = self.config.facts
        if facts.verification_mode == "evidence_search":
            return facts.evidence_threshold
        return facts.self_assessment_threshold
