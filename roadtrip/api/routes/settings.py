from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from api.middleware.auth import require_settings_pin, store_pin
from audio.tts import VALID_VOICES
from core.config import PROVIDER_CREDENTIALS, VERIFICATION_MODES

router = APIRouter()


class ProviderUpdate(BaseModel):
    provider: str  # "claude", "openai", or "gemini"


class APIKeyUpdate(BaseModel):
    anthropic: Optional[str] = None
    openai: Optional[str] = None
    gemini: Optional[str] = None
    mapbox: Optional[str] = None


class VerificationUpdate(BaseModel):
    verification_mode: Optional[str] = None
    self_assessment_threshold: Optional[int] = Field(default=None, ge=0, le=10)
    evidence_threshold: Optional[int] = Field(default=None, ge=0, le=10)
    max_attempts: Optional[int] = Field(default=None, ge=1)


class NarrationUpdate(BaseModel):
    voice: Optional[str] = None


class PinUpdate(BaseModel):
    pin: str  # 4-6 digits


def _mask(value: str) -> str:
    return value[:4] + "****" + value[-4:] if len(value) > 8 else "****"


@router.get("/")
async def get_settings(request: Request, _=Depends(require_settings_pin)):
    """Get all current settings."""
    cm = request.app.state.config_manager
    data = cm.config.model_dump()
    # Report effective keys (config or environment), masked
    for key in data.get("api_keys", {}):
        val = cm.api_key(key)
        data["api_keys"][key] = _mask(val) if val else ""
    return data


@router.put("/provider")
async def update_provider(
    body: ProviderUpdate, request: Request, _=Depends(require_settings_pin)
):
    """Select the cloud LLM provider."""
    if body.provider not in PROVIDER_CREDENTIALS:
        return {"error": "Provider must be 'claude', 'openai', or 'gemini'"}

    cm = request.app.state.config_manager
    cm.update(provider=body.provider)
    request.app.state.shared_state.active_provider = body.provider

    return {"provider": body.provider, "status": "updated"}


@router.put("/api-keys")
async def update_api_keys(
    body: APIKeyUpdate, request: Request, _=Depends(require_settings_pin)
):
    """Update credentials. Takes effect on the next request."""
    cm = request.app.state.config_manager
    updates = body.model_dump(exclude_none=True)
    if updates:
        cm.update_nested("api_keys", **updates)
    return {"status": "updated"}


@router.put("/verification")
async def update_verification(
    body: VerificationUpdate, request: Request, _=Depends(require_settings_pin)
):
    """Switch verification strategy or thresholds."""
    if body.verification_mode is not None and body.verification_mode not in VERIFICATION_MODES:
        return {"error": "verification_mode must be 'self_assessment' or 'evidence_search'"}

    cm = request.app.state.config_manager
    updates = body.model_dump(exclude_none=True)
    if updates:
        cm.update_nested("facts", **updates)
        request.app.state.narrator.apply_fact_settings()
    return {"status": "updated", "facts": cm.config.facts.model_dump()}


@router.put("/narration")
async def update_narration(
    body: NarrationUpdate, request: Request, _=Depends(require_settings_pin)
):
    """Change the narration voice."""
    if body.voice is not None and body.voice not in VALID_VOICES:
        return {"error": f"voice must be one of: {', '.join(VALID_VOICES)}"}

    cm = request.app.state.config_manager
    updates = body.model_dump(exclude_none=True)
    if updates:
        cm.update_nested("narration", **updates)
    return {"status": "updated", "narration": cm.config.narration.model_dump()}


@router.put("/pin")
async def update_pin(body: PinUpdate, request: Request, _=Depends(require_settings_pin)):
    """Set or change the settings PIN. Changing it requires the current one."""
    if len(body.pin) < 4 or len(body.pin) > 6:
        return {"error": "PIN must be 4-6 digits."}

    if not body.pin.isdigit():
        return {"error": "PIN must contain only digits."}

    store_pin(request.app.state.config_manager, body.pin)
    return {"status": "updated"}
