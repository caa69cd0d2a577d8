"""
Visualization and analysis presets.

Built-in presets are read-only; custom presets are persisted to
``presets.json`` in the config folder.
"""

import random
import string
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .app_config import AppConfigManager, app_config
from .files import resolve_input
from .shared.advanced_metrics import AdvancedMetricsCalculator
from .shared.export_utils import to_json
from .shared.logger import get_logger

logger = get_logger(__name__)

CATEGORIES = ("audio", "graph", "analysis")

_BUILT_IN_CREATED = datetime(2024, 1, 1).isoformat()

BUILT_IN_PRESETS: List[Dict[str, Any]] = [
    {
        "id": "crypto-analysis",
        "name": "Cryptography Analysis",
        "description": "Optimized for analyzing encrypted data and random number generators",
        "category": "analysis",
        "settings": {
            "metrics": ["shannon_entropy", "chi_squared", "frequency_test", "runs_test"],
            "visualizations": ["entropy-heatmap", "byte-distribution", "autocorrelation"],
        },
    },
    {
        "id": "audio-inspection",
        "name": "Audio File Inspection",
        "description": "For analyzing audio file formats and PCM data",
        "category": "audio",
        "settings": {
            "audio_mode": "pcm",
            "visualization_mode": "waveform",
            "show_spectrogram": True,
        },
    },
    {
        "id": "random-testing",
        "name": "Random Data Testing",
        "description": "Statistical tests for randomness validation",
        "category": "analysis",
        "settings": {
            "metrics": ["shannon_entropy", "kolmogorov_complexity_estimate", "serial_correlation", "birthday_spacings"],
            "tests": ["frequency", "runs", "longest_run", "serial"],
        },
    },
    {
        "id": "compressed-analysis",
        "name": "Compressed Data Analysis",
        "description": "Analyze compression efficiency and patterns",
        "category": "analysis",
        "settings": {
            "metrics": ["lempel_ziv_complexity", "compression_ratio_estimate", "redundancy_percentage"],
            "visualizations": ["pattern-frequency", "ngram-diversity"],
        },
    },
    {
        "id": "executable-analysis",
        "name": "Executable Analysis",
        "description": "For analyzing binary executables and machine code",
        "category": "analysis",
        "settings": {
            "metrics": ["ascii_printable_percentage", "null_byte_count", "byte_distribution_skewness"],
            "visualizations": ["byte-heatmap", "partition-entropy", "boundary-detection"],
        },
    },
    {
        "id": "network-packet",
        "name": "Network Packet Analysis",
        "description": "Analyze network traffic and packet patterns",
        "category": "analysis",
        "settings": {
            "metrics": ["pattern_regularity_index", "periodicity_strength", "transition_density"],
            "visualizations": ["pattern-timeline", "periodicity-spectrum"],
        },
    },
]

BUILT_IN_IDS = {p["id"] for p in BUILT_IN_PRESETS}


class PresetManager:
    """Built-in presets plus persisted custom ones."""

    DOCUMENT = "presets"

    def __init__(self, store: AppConfigManager = app_config):
        self._store = store

    def _custom(self) -> List[Dict[str, Any]]:
        custom = self._store.load_document(self.DOCUMENT, list)
        if not isinstance(custom, list):
            logger.warning("Ignoring malformed %s.json", self.DOCUMENT)
            return []
        return custom

    def get_all(self) -> List[Dict[str, Any]]:
        built_in = [{**p, "built_in": True, "created": _BUILT_IN_CREATED} for p in BUILT_IN_PRESETS]
        return built_in + [{**p, "built_in": False} for p in self._custom()]

    def get_by_id(self, preset_id: str) -> Optional[Dict[str, Any]]:
        return next((p for p in self.get_all() if p["id"] == preset_id), None)

    def get_by_category(self, category: str) -> List[Dict[str, Any]]:
        return [p for p in self.get_all() if p["category"] == category]

    def save(self, name: str, description: str, category: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        if category not in CATEGORIES:
            raise ValueError(f"Category must be one of {', '.join(CATEGORIES)}")
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        preset = {
            "id": f"custom_{int(time.time() * 1000)}_{suffix}",
            "name": name,
            "description": description,
            "category": category,
            "settings": settings,
            "created": datetime.now().isoformat(),
        }
        custom = self._custom()
        custom.append(preset)
        self._store.save_document(self.DOCUMENT, custom)
        return {**preset, "built_in": False}

    def delete(self, preset_id: str) -> bool:
        """Delete a custom preset. Built-in presets are never deleted."""
        if preset_id in BUILT_IN_IDS:
            return False
        custom = self._custom()
        remaining = [p for p in custom if p.get("id") != preset_id]
        if len(remaining) == len(custom):
            return False
        self._store.save_document(self.DOCUMENT, remaining)
        return True

    def export_preset(self, preset_id: str) -> Optional[str]:
        preset = self.get_by_id(preset_id)
        if preset is None:
            return None
        exported = {k: v for k, v in preset.items() if k != "built_in"}
        return to_json(exported)

    def import_preset(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Save a copy of an exported preset under a new id."""
        try:
            return self.save(
                name=data["name"],
                description=data.get("description", ""),
                category=data["category"],
                settings=data.get("settings", {}),
            )
        except KeyError as e:
            raise ValueError(f"Preset is missing field {e}") from None


preset_manager = PresetManager()


# ============= Routes =============

router = APIRouter(prefix="/presets")


class PresetCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    category: str = Field("analysis", description="audio, graph or analysis")
    settings: Dict[str, Any] = Field(default_factory=dict)


class PresetEvaluateRequest(BaseModel):
    bits: Optional[str] = None
    file_id: Optional[str] = None


def _get_or_404(preset_id: str) -> Dict[str, Any]:
    preset = preset_manager.get_by_id(preset_id)
    if preset is None:
        raise HTTPException(status_code=404, detail=f"Preset '{preset_id}' not found")
    return preset


@router.get("")
async def list_presets(category: Optional[str] = None):
    presets = preset_manager.get_by_category(category) if category else preset_manager.get_all()
    return {"presets": presets, "total": len(presets)}


@router.post("")
async def create_preset(request: PresetCreate):
    try:
        return preset_manager.save(request.name, request.description, request.category, request.settings)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/import")
async def import_preset(data: Dict[str, Any]):
    try:
        return preset_manager.import_preset(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{preset_id}")
async def get_preset(preset_id: str):
    return _get_or_404(preset_id)


@router.delete("/{preset_id}")
async def delete_preset(preset_id: str):
    if preset_id in BUILT_IN_IDS:
        raise HTTPException(status_code=403, detail="Built-in presets cannot be deleted")
    if not preset_manager.delete(preset_id):
        raise HTTPException(status_code=404, detail=f"Preset '{preset_id}' not found")
    return {"success": True, "deleted": preset_id}


@router.get("/{preset_id}/export")
async def export_preset(preset_id: str):
    preset = _get_or_404(preset_id)
    slug = "-".join(preset["name"].lower().split())
    return Response(
        content=preset_manager.export_preset(preset_id),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="preset-{slug}.json"'},
    )


@router.post("/{preset_id}/evaluate")
async def evaluate_preset(preset_id: str, request: PresetEvaluateRequest):
    """Compute the preset's metrics from the advanced report."""
    preset = _get_or_404(preset_id)
    wanted = preset.get("settings", {}).get("metrics", [])
    bits = resolve_input(request.bits, request.file_id)
    flat = AdvancedMetricsCalculator.flatten(AdvancedMetricsCalculator.calculate(bits))
    return {
        "preset_id": preset_id,
        "metrics": {m: flat[m] for m in wanted if m in flat},
        "missing": [m for m in wanted if m not in flat],
    }
