import hashlib
import hmac
from pathlib import Path

from fastapi import HTTPException, Request, status
from loguru import logger

from core.config import ConfigManager

PIN_HEADER = "X-Settings-PIN"


def hash_pin(pin: str, salt: str) -> str:
    """Hash a PIN with a salt using SHA-256."""
    return hashlib.pbkdf2_hmac(
        "sha256", pin.encode(), salt.encode(), iterations=100_000
    ).hex()


def verify_pin(pin: str, stored_hash: str, salt: str) -> bool:
    """Verify a PIN against a stored hash."""
    computed = hash_pin(pin, salt)
    return hmac.compare_digest(computed, stored_hash)


def pin_path(config_manager: ConfigManager) -> Path:
    return config_manager.data_dir / "pin.hash"


def pin_configured(config_manager: ConfigManager) -> bool:
    return pin_path(config_manager).exists()


def store_pin(config_manager: ConfigManager, pin: str) -> None:
    """Hash and persist a new settings PIN."""
    # The salt lives in config.json, which must exist before the hash does
    config_manager.save()
    path = pin_path(config_manager)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(hash_pin(pin, config_manager.config.server.device_id))
    logger.info("Settings PIN updated.")


async def require_settings_pin(request: Request) -> None:
    """Dependency: require the settings PIN.

    The PIN is sent as a header: X-Settings-PIN. Until a PIN has been set
    the settings stay open so the first setup can store credentials.
    """
    config_manager = request.app.state.config_manager
    if not pin_configured(config_manager):
        return

    pin = request.headers.get(PIN_HEADER)
    if not pin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Settings PIN required.",
        )

    stored_hash = pin_path(config_manager).read_text().strip()
    if not verify_pin(pin, stored_hash, config_manager.config.server.device_id):
        logger.warning("Rejected settings request with an invalid PIN.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid PIN.",
        )
