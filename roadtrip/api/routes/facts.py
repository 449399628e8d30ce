from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from core.config import ConfigurationError
from facts.models import AcquisitionPhase

router = APIRouter()

SERVER_CONFIG_ERROR = "Server configuration error"


class FactBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    place_name: Optional[str] = Field(default=None, alias="placeName")
    is_destination: bool = Field(default=False, alias="isDestination")


class VerifyBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fun_fact: Optional[str] = Field(default=None, alias="funFact")
    place_name: Optional[str] = Field(default=None, alias="placeName")


class NarrateBody(BaseModel):
    text: Optional[str] = None
    voice: Optional[str] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/fact")
async def get_fact(body: FactBody, request: Request):
    """Generate and verify a fun fact about a place.

    Always answers 200 with narratable text unless the server itself is
    misconfigured; unverified answers carry the fallback text.
    """
    if not body.place_name or not body.place_name.strip():
        return _error(400, "placeName is required")

    cm = request.app.state.config_manager
    if not cm.has_generation_credentials:
        logger.error("[FACT] No credential for provider '{}'", cm.config.provider)
        return _error(500, SERVER_CONFIG_ERROR)

    acquirer = request.app.state.narrator.acquirer
    fact = await acquirer.acquire_fact(body.place_name, body.is_destination)
    if fact.outcome == AcquisitionPhase.ABORTED:
        return _error(500, SERVER_CONFIG_ERROR)

    return {"funFact": fact.text, "verified": fact.verified}


@router.post("/verify")
async def verify_fact(body: VerifyBody, request: Request):
    """Verify a single candidate fact."""
    if not body.fun_fact or not body.place_name:
        return _error(400, "funFact and placeName are required")

    cm = request.app.state.config_manager
    if not cm.has_generation_credentials:
        return _error(500, SERVER_CONFIG_ERROR)

    verifier = request.app.state.narrator.verifier
    result = await verifier.verify(body.fun_fact, body.place_name)
    return {"verified": result.verified, "confidence": result.confidence}


@router.post("/narrate")
async def narrate(body: NarrateBody, request: Request):
    """Synthesize text to mp3 audio."""
    if not body.text or not body.text.strip():
        return _error(400, "text is required")

    speech = request.app.state.narrator.cloud_speech
    try:
        audio = await speech.synthesize(body.text, voice=body.voice, response_format="mp3")
    except ConfigurationError as e:
        logger.error("[NARRATE] {}", e)
        return _error(500, SERVER_CONFIG_ERROR)
    except Exception as e:
        logger.error("[NARRATE] Speech synthesis failed: {}", e)
        return _error(502, "Speech synthesis failed")

    return Response(content=audio, media_type="audio/mpeg")
