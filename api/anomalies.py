"""
Anomaly definitions and detection.

A definition names one of the built-in detectors and the minimum length it
reports. Definitions are persisted to ``anomalies.json`` in the config folder.
"""

import random
import string
import time
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .app_config import AppConfigManager, app_config
from .shared.anomaly_detectors import DETECTORS
from .shared.logger import get_logger

logger = get_logger(__name__)

SEVERITIES = ("low", "medium", "high")


@dataclass
class AnomalyDefinition:
    id: str
    name: str
    description: str
    category: str
    severity: str
    min_length: int
    enabled: bool
    detector: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnomalyDefinition":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


DEFAULT_ANOMALIES = [
    AnomalyDefinition("palindrome", "Palindrome", "Detects palindromic bit sequences",
                      "Pattern", "medium", 5, True, "palindrome"),
    AnomalyDefinition("repeating_pattern", "Repeating Pattern", "Detects sequences that repeat consecutively",
                      "Pattern", "medium", 4, True, "repeating_pattern"),
    AnomalyDefinition("alternating", "Alternating Sequence", "Detects alternating 0101... or 1010... patterns",
                      "Pattern", "low", 8, True, "alternating"),
    AnomalyDefinition("long_run", "Long Run", "Detects long sequences of consecutive identical bits",
                      "Run", "high", 10, True, "long_run"),
    AnomalyDefinition("sparse_region", "Sparse Region", "Detects regions with extremely low or high bit density",
                      "Density", "medium", 64, True, "sparse_region"),
    AnomalyDefinition("byte_misalignment", "Byte Misalignment", "Detects when data is not aligned to byte boundaries",
                      "Structure", "low", 1, True, "byte_misalignment"),
]


def _custom_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"custom_{int(time.time() * 1000)}_{suffix}"


class AnomaliesManager:
    """Persisted anomaly definitions."""

    DOCUMENT = "anomalies"

    def __init__(self, store: AppConfigManager = app_config):
        self._store = store
        self._definitions: List[AnomalyDefinition] = []
        self.load()

    def load(self) -> None:
        raw = self._store.load_document(self.DOCUMENT, lambda: None)
        if raw is None:
            self._definitions = self._defaults()
            self._save()
            return
        try:
            self._definitions = [AnomalyDefinition.from_dict(d) for d in raw]
        except (TypeError, AttributeError) as e:
            logger.warning("Invalid anomaly definitions, using defaults: %s", e)
            self._definitions = self._defaults()

    def _save(self) -> None:
        self._store.save_document(self.DOCUMENT, [d.to_dict() for d in self._definitions])

    @staticmethod
    def _defaults() -> List[AnomalyDefinition]:
        return [AnomalyDefinition(**asdict(d)) for d in DEFAULT_ANOMALIES]

    def get_all(self) -> List[AnomalyDefinition]:
        return list(self._definitions)

    def get_enabled(self) -> List[AnomalyDefinition]:
        return [d for d in self._definitions if d.enabled]

    def get(self, definition_id: str) -> Optional[AnomalyDefinition]:
        return next((d for d in self._definitions if d.id == definition_id), None)

    def add(self, data: Dict[str, Any]) -> AnomalyDefinition:
        """Add a definition; raises ValueError for unknown detectors or severities."""
        self._check(data)
        definition = AnomalyDefinition.from_dict({**data, "id": _custom_id()})
        self._definitions.append(definition)
        self._save()
        return definition

    def update(self, definition_id: str, updates: Dict[str, Any]) -> Optional[AnomalyDefinition]:
        definition = self.get(definition_id)
        if definition is None:
            return None
        self._check(updates)
        for key, value in updates.items():
            if key != "id" and hasattr(definition, key):
                setattr(definition, key, value)
        self._save()
        return definition

    def delete(self, definition_id: str) -> bool:
        before = len(self._definitions)
        self._definitions = [d for d in self._definitions if d.id != definition_id]
        if len(self._definitions) == before:
            return False
        self._save()
        return True

    def toggle(self, definition_id: str) -> Optional[bool]:
        definition = self.get(definition_id)
        if definition is None:
            return None
        definition.enabled = not definition.enabled
        self._save()
        return definition.enabled

    def reset_to_defaults(self) -> None:
        self._definitions = self._defaults()
        self._save()

    def get_categories(self) -> List[str]:
        return list(dict.fromkeys(d.category for d in self._definitions))

    @staticmethod
    def _check(data: Dict[str, Any]) -> None:
        if "detector" in data and data["detector"] not in DETECTORS:
            raise ValueError(f"Unknown detector: {data['detector']}")
        if "severity" in data and data["severity"] not in SEVERITIES:
            raise ValueError(f"Severity must be one of {', '.join(SEVERITIES)}")

    def execute_detection(self, definition_id: str, bits: str) -> List[Dict[str, Any]]:
        """Run one definition; missing, disabled or failing definitions give []."""
        definition = self.get(definition_id)
        if definition is None or not definition.enabled:
            return []
        detector = DETECTORS.get(definition.detector)
        if detector is None:
            logger.warning("Anomaly %s refers to unknown detector %s", definition.id, definition.detector)
            return []
        try:
            return detector(bits, definition.min_length)
        except Exception as e:
            logger.error("Error executing anomaly detection %r: %s", definition.name, e)
            return []

    def detect_all(self, bits: str) -> List[Dict[str, Any]]:
        """Run every enabled definition, tagging each hit with its definition."""
        found = []
        for definition in self.get_enabled():
            for hit in self.execute_detection(definition.id, bits):
                found.append({
                    **hit,
                    "anomaly_id": definition.id,
                    "name": definition.name,
                    "category": definition.category,
                    "severity": definition.severity,
                })
        found.sort(key=lambda a: (a["position"], a["anomaly_id"]))
        return found


anomalies_manager = AnomaliesManager()


# ============= Routes =============

router = APIRouter(prefix="/anomalies")


class AnomalyCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    category: str = "Custom"
    severity: str = Field("medium", description="low, medium or high")
    min_length: int = Field(4, ge=1)
    enabled: bool = True
    detector: str = Field(..., description="Built-in detector name")


class AnomalyUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    severity: Optional[str] = None
    min_length: Optional[int] = Field(None, ge=1)
    enabled: Optional[bool] = None
    detector: Optional[str] = None


@router.get("")
async def list_definitions():
    return {
        "definitions": [d.to_dict() for d in anomalies_manager.get_all()],
        "categories": anomalies_manager.get_categories(),
        "detectors": list(DETECTORS),
    }


@router.post("")
async def create_definition(request: AnomalyCreate):
    try:
        return anomalies_manager.add(request.model_dump()).to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/reset")
async def reset_definitions():
    anomalies_manager.reset_to_defaults()
    return {"definitions": [d.to_dict() for d in anomalies_manager.get_all()]}


@router.get("/{definition_id}")
async def get_definition(definition_id: str):
    definition = anomalies_manager.get(definition_id)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Anomaly definition '{definition_id}' not found")
    return definition.to_dict()


@router.put("/{definition_id}")
async def update_definition(definition_id: str, request: AnomalyUpdate):
    try:
        definition = anomalies_manager.update(definition_id, request.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Anomaly definition '{definition_id}' not found")
    return definition.to_dict()


@router.delete("/{definition_id}")
async def delete_definition(definition_id: str):
    if not anomalies_manager.delete(definition_id):
        raise HTTPException(status_code=404, detail=f"Anomaly definition '{definition_id}' not found")
    return {"success": True, "deleted": definition_id}


@router.post("/{definition_id}/toggle")
async def toggle_definition(definition_id: str):
    enabled = anomalies_manager.toggle(definition_id)
    if enabled is None:
        raise HTTPException(status_code=404, detail=f"Anomaly definition '{definition_id}' not found")
    return {"id": definition_id, "enabled": enabled}
