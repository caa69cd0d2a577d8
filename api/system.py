"""
System API routes: health, environment info, recent errors and settings.
"""

import platform
import sys
import traceback
from collections import deque
from datetime import datetime
from importlib import metadata
from typing import Any, Deque, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .app_config import app_config, get_max_bits
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

MAX_ERROR_LOG = 200

_error_log: Deque[Dict[str, Any]] = deque(maxlen=MAX_ERROR_LOG)


def log_error(
    endpoint: str,
    message: str,
    level: str = "error",
    details: Optional[str] = None,
    exc: Optional[BaseException] = None,
) -> Dict[str, Any]:
    """Record a server-side error for ``GET /system/errors``."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "endpoint": endpoint,
        "message": message,
        "level": level,
        "details": details,
        "traceback": "".join(traceback.format_exception(exc)) if exc else None,
    }
    _error_log.appendleft(entry)
    logger.error("%s: %s", endpoint, message)
    return entry


def get_recent_errors(limit: int = 50) -> List[Dict[str, Any]]:
    return list(_error_log)[:limit]


def clear_errors() -> None:
    _error_log.clear()


def _get_package_versions() -> Dict[str, str]:
    packages = {}
    for name in ("fastapi", "pydantic", "uvicorn", "numpy", "scipy", "orjson", "platformdirs"):
        try:
            packages[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            pass
    return packages


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "message": "bitwise workbench is running"}


@router.get("/system/info")
async def system_info():
    """Get system and environment information."""
    try:
        app_version = metadata.version("bitwise-workbench")
    except metadata.PackageNotFoundError:
        app_version = "dev"

    return {
        "app_version": app_version,
        "python": {
            "version": sys.version,
            "platform": sys.platform,
            "executable": sys.executable,
        },
        "system": {
            "os": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
        },
        "limits": {"max_bits": get_max_bits()},
        "config_path": str(app_config.get_config_path()),
        "packages": _get_package_versions(),
    }


@router.get("/system/errors")
async def system_errors(limit: int = 50):
    """Recent server errors, newest first."""
    errors = get_recent_errors(limit)
    return {"errors": errors, "total": len(_error_log)}


@router.delete("/system/errors")
async def system_errors_clear():
    clear_errors()
    return {"success": True}


class SettingsUpdate(BaseModel):
    settings: Dict[str, Any] = Field(..., description="Partial settings, deep-merged into the stored ones")


@router.get("/settings")
async def get_settings():
    return app_config.get_app_settings()


@router.put("/settings")
async def update_settings(request: SettingsUpdate):
    if not app_config.update_app_settings(request.settings):
        raise HTTPException(status_code=500, detail="Failed to save settings")
    return app_config.get_app_settings()


class ConfigPathRequest(BaseModel):
    path: str = Field(..., min_length=1, description="Existing folder to store settings and documents in")


def _config_path_info() -> Dict[str, Any]:
    return {"path": app_config.get_config_path(), "is_custom": app_config.is_using_custom_path()}


@router.get("/settings/config-path")
async def get_config_path():
    return _config_path_info()


@router.put("/settings/config-path")
async def set_config_path(request: ConfigPathRequest):
    """Redirect the config folder; takes effect immediately."""
    try:
        saved = app_config.set_config_path(request.path)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not saved:
        raise HTTPException(status_code=500, detail="Failed to write config redirect")
    return _config_path_info()


@router.delete("/settings/config-path")
async def reset_config_path():
    if not app_config.reset_config_path():
        raise HTTPException(status_code=500, detail="Failed to reset config path")
    return _config_path_info()
