"""
Files API routes for the bitwise workbench.

This module exposes the in-memory file registry:
- File CRUD, upload (binary or text) and generation (random or pattern)
- Bit slicing, single-bit and range edits, undo/redo, reset and commit
- Download as raw bytes and text view
- Edit history (flat or grouped) and restore
- Boundaries, partitions, saved sequence searches and highlight ranges
- Applying an operation, codec, compressor or transform to the whole file
  or a range, recorded in history

Ranges in request bodies are Python slices: ``start`` inclusive, ``end``
exclusive.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .bit_model import BinaryModel
from .file_manager import (
    BinaryFile,
    FileTooLargeError,
    binary_to_text,
    check_length,
    check_size,
    file_manager,
    text_to_binary,
)
from .sequences import DEFAULT_SEQUENCE_COLOR, parse_sequences
from .shared.binary_stats import find_unique_boundary
from .shared.bitstring import InvalidBitStringError, UnknownOperationError, validate_bits
from .shared.logger import get_logger
from .shared.pipeline_service import STEP_TYPES, run_step

logger = get_logger(__name__)

router = APIRouter(prefix="/files")

MAX_SLICE_LENGTH = 65536


# ============= Helpers shared with other routers =============


def validate_input_bits(bits: str) -> str:
    """Validate request bits, mapping errors to 400 and 413."""
    try:
        return check_size(validate_bits(bits))
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except InvalidBitStringError as e:
        raise HTTPException(status_code=400, detail=str(e))


def get_file_or_404(file_id: str) -> BinaryFile:
    file = file_manager.get_file(file_id)
    if file is None:
        raise HTTPException(status_code=404, detail=f"File '{file_id}' not found")
    return file


def resolve_input(bits: Optional[str], file_id: Optional[str]) -> str:
    """Return request bits, or the current bits of ``file_id``."""
    if bits is not None:
        return validate_input_bits(bits)
    if file_id:
        return get_file_or_404(file_id).state.bits
    raise HTTPException(status_code=400, detail="Either 'bits' or 'file_id' is required")


def check_range(bits: str, start: Optional[int], end: Optional[int]) -> tuple[int, int]:
    start = 0 if start is None else start
    end = len(bits) if end is None else end
    if not 0 <= start <= end <= len(bits):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid range [{start}, {end}) for {len(bits)} bits",
        )
    return start, end


def _file_response(file: BinaryFile) -> Dict[str, Any]:
    data = file.to_dict()
    data["active"] = file_manager.get_active() is file
    return data


# ============= Pydantic Models =============


class CreateFileRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Display name")
    bits: Optional[str] = Field(None, description="Initial bit string")
    text: Optional[str] = Field(None, description="Text to load as 8-bit character codes")
    file_type: str = Field("binary", description="binary or text")


class GenerateRequest(BaseModel):
    name: str = Field("generated", description="Display name")
    mode: str = Field("random", description="random or pattern")
    length: int = Field(..., ge=1, description="Number of bits to generate")
    probability: float = Field(0.5, ge=0.0, le=1.0, description="Probability of a 1 (random mode)")
    seed: Optional[int] = Field(None, description="Random seed for reproducibility")
    pattern: Optional[str] = Field(None, description="Pattern to repeat (pattern mode)")


class UpdateFileRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    group: Optional[str] = Field(None, description="Group name; empty string clears it")


class ReplaceBitsRequest(BaseModel):
    bits: str = Field(..., description="New contents; clears undo history")


class EditRequest(BaseModel):
    start: int = Field(..., ge=0, description="First bit to overwrite")
    bits: str = Field(..., min_length=1, description="Replacement bits")


class BoundaryRequest(BaseModel):
    sequence: str = Field(..., min_length=1, description="Marker bit sequence")
    description: str = Field("Boundary", description="Label")
    color: str = Field("#FF00FF", description="Highlight color")
    mode: str = Field("mark", description="mark, append or insert")
    position: Optional[int] = Field(None, ge=0, description="Insert position (insert mode)")


class SequenceSearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Bit sequences separated by commas or spaces")
    color: str = Field(DEFAULT_SEQUENCE_COLOR, description="Highlight color for the new sequences")


class ApplyRequest(BaseModel):
    kind: str = Field("operation", description=f"One of {', '.join(STEP_TYPES)}")
    name: str = Field(..., description="Operation, codec, compressor or transform name")
    params: Dict[str, Any] = Field(default_factory=dict)
    start: Optional[int] = Field(None, ge=0, description="Range start (inclusive)")
    end: Optional[int] = Field(None, ge=0, description="Range end (exclusive)")
    description: Optional[str] = Field(None, description="History label")


class GroupRequest(BaseModel):
    name: str = Field(..., min_length=1)


# ============= Registry =============


@router.get("")
async def list_files():
    files = file_manager.list_files()
    active = file_manager.get_active()
    return {
        "files": [f.to_dict() for f in files],
        "active_id": active.id if active else None,
        "groups": file_manager.get_groups(),
        "total": len(files),
    }


@router.post("")
async def create_file(request: CreateFileRequest):
    if request.bits is not None and request.text is not None:
        raise HTTPException(status_code=400, detail="Provide either 'bits' or 'text', not both")
    if request.text is not None:
        bits = validate_input_bits(text_to_binary(request.text))
        file_type = "text"
    else:
        bits = validate_input_bits(request.bits or "")
        file_type = request.file_type
    file = file_manager.create_file(request.name, bits, file_type)
    return _file_response(file)


@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    as_text: bool = Form(False, description="Read the upload as 0/1 text instead of raw bytes"),
):
    """Load an uploaded file as raw bytes, or as a text file of 0/1 characters."""
    content = await file.read()
    if as_text:
        bits = BinaryModel.from_text(content.decode("utf-8", errors="ignore"))
    else:
        bits = BinaryModel.from_bytes(content)
    bits = validate_input_bits(bits)
    created = file_manager.create_file(file.filename or "upload", bits, "text" if as_text else "binary")
    created.state.add_to_history(f"Loaded {file.filename or 'upload'}")
    return _file_response(created)


@router.post("/generate")
async def generate_file(request: GenerateRequest):
    try:
        check_length(request.length)
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))

    if request.mode == "random":
        bits = BinaryModel.generate_random(request.length, request.probability, request.seed)
        label = f"Generated random ({request.length} bits, p={request.probability})"
    elif request.mode == "pattern":
        if not request.pattern:
            raise HTTPException(status_code=400, detail="Pattern mode requires 'pattern'")
        validate_input_bits(request.pattern)
        bits = validate_input_bits(BinaryModel.generate_pattern(request.pattern, request.length))
        label = f"Generated pattern {request.pattern} ({request.length} bits)"
    else:
        raise HTTPException(status_code=400, detail=f"Unknown generation mode: {request.mode}")

    file = file_manager.create_file(request.name, bits)
    file.state.add_to_history(label)
    return _file_response(file)


@router.get("/active")
async def get_active_file():
    file = file_manager.get_active()
    if file is None:
        raise HTTPException(status_code=404, detail="No active file")
    return _file_response(file)


@router.put("/active/{file_id}")
async def set_active_file(file_id: str):
    if not file_manager.set_active(file_id):
        raise HTTPException(status_code=404, detail=f"File '{file_id}' not found")
    return _file_response(get_file_or_404(file_id))


@router.get("/groups")
async def list_groups():
    return {"groups": file_manager.get_groups()}


@router.post("/groups")
async def add_group(request: GroupRequest):
    file_manager.add_group(request.name)
    return {"groups": file_manager.get_groups()}


@router.delete("/groups/{name}")
async def delete_group(name: str):
    file_manager.delete_group(name)
    return {"groups": file_manager.get_groups()}


@router.get("/{file_id}")
async def get_file(file_id: str):
    return _file_response(get_file_or_404(file_id))


@router.patch("/{file_id}")
async def update_file(file_id: str, request: UpdateFileRequest):
    file = get_file_or_404(file_id)
    if request.name is not None:
        file_manager.rename_file(file_id, request.name)
    if request.group is not None:
        file_manager.set_group(file_id, request.group)
    return _file_response(file)


@router.delete("/{file_id}")
async def delete_file(file_id: str):
    if not file_manager.delete_file(file_id):
        raise HTTPException(status_code=404, detail=f"File '{file_id}' not found")
    return {"success": True, "deleted": file_id}


# ============= Bits and editing =============


@router.get("/{file_id}/bits")
async def get_bits(file_id: str, offset: int = 0, length: int = 4096):
    """Return a window of the working bits."""
    file = get_file_or_404(file_id)
    if offset < 0 or length < 0:
        raise HTTPException(status_code=400, detail="offset and length must be non-negative")
    length = min(length, MAX_SLICE_LENGTH)
    bits = file.state.bits
    return {
        "file_id": file_id,
        "offset": offset,
        "length": len(bits[offset:offset + length]),
        "total": len(bits),
        "bits": bits[offset:offset + length],
    }


@router.put("/{file_id}/bits")
async def replace_bits(file_id: str, request: ReplaceBitsRequest):
    """Load new contents; the undo history starts over."""
    file = get_file_or_404(file_id)
    file_manager.update_file(file_id, validate_input_bits(request.bits))
    file.state.add_to_history("Loaded new contents")
    return _file_response(file)


@router.post("/{file_id}/edit")
async def edit_bits(file_id: str, request: EditRequest):
    file = get_file_or_404(file_id)
    validate_input_bits(request.bits)
    state = file.state
    if request.start >= len(state.model):
        raise HTTPException(status_code=400, detail=f"Start {request.start} is past the end ({len(state.model)} bits)")
    try:
        check_length(request.start + len(request.bits))
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))

    if len(request.bits) == 1:
        state.model.set_bit(request.start, request.bits)
    else:
        state.model.set_bits(request.start, request.bits)
    state.add_to_history(f"Edit at {request.start} ({len(request.bits)} bits)")
    file_manager.touch(file)
    return _file_response(file)


@router.post("/{file_id}/undo")
async def undo(file_id: str):
    file = get_file_or_404(file_id)
    if not file.state.model.undo():
        raise HTTPException(status_code=400, detail="Nothing to undo")
    file_manager.touch(file)
    return _file_response(file)


@router.post("/{file_id}/redo")
async def redo(file_id: str):
    file = get_file_or_404(file_id)
    if not file.state.model.redo():
        raise HTTPException(status_code=400, detail="Nothing to redo")
    file_manager.touch(file)
    return _file_response(file)


@router.post("/{file_id}/reset")
async def reset(file_id: str):
    """Discard edits since the last commit."""
    file = get_file_or_404(file_id)
    file.state.model.reset()
    file.state.add_to_history("Reset to original")
    file_manager.touch(file)
    return _file_response(file)


@router.post("/{file_id}/commit")
async def commit(file_id: str):
    file = get_file_or_404(file_id)
    file.state.model.commit()
    file_manager.touch(file)
    return _file_response(file)


@router.get("/{file_id}/download")
async def download(file_id: str):
    """Raw bytes, last byte right-padded with zeros."""
    file = get_file_or_404(file_id)
    filename = file.name if "." in file.name else f"{file.name}.bin"
    return Response(
        content=BinaryModel.to_bytes(file.state.bits),
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{file_id}/text")
async def text_view(file_id: str):
    file = get_file_or_404(file_id)
    return {"file_id": file_id, "text": binary_to_text(file.state.bits)}


@router.post("/{file_id}/apply")
async def apply_step(file_id: str, request: ApplyRequest):
    """Apply one step to the file (or a range of it) as an undoable edit."""
    file = get_file_or_404(file_id)
    bits = file.state.bits
    start, end = check_range(bits, request.start, request.end)

    try:
        if start == 0 and end == len(bits):
            new_bits = run_step(request.kind, request.name, bits, request.params)
        else:
            segment = run_step(request.kind, request.name, bits[start:end], request.params)
            new_bits = bits[:start] + segment + bits[end:]
    except UnknownOperationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"{request.name} failed: {e}")

    label = request.description or f"Transform: {request.name}"
    if (start, end) != (0, len(bits)):
        label += f" [{start}:{end}]"
    try:
        file.state.apply(new_bits, label)
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    file_manager.touch(file)
    logger.info("Applied %s %s to %s (%d -> %d bits)", request.kind, request.name, file_id, len(bits), len(new_bits))
    return _file_response(file)


# ============= History =============


@router.get("/{file_id}/history")
async def get_history(file_id: str, grouped: bool = False, include_bits: bool = False):
    state = get_file_or_404(file_id).state
    if grouped:
        groups = state.get_history_groups()
        return {"groups": [g.to_dict(include_bits) for g in groups], "total": len(state.history)}
    entries = state.history.get_entries()
    return {"entries": [e.to_dict(include_bits) for e in entries], "total": len(entries)}


@router.post("/{file_id}/history/{entry_id}/restore")
async def restore_history(file_id: str, entry_id: str):
    file = get_file_or_404(file_id)
    if not file.state.restore(entry_id):
        raise HTTPException(status_code=404, detail=f"History entry '{entry_id}' not found")
    file_manager.touch(file)
    return _file_response(file)


@router.delete("/{file_id}/history")
async def clear_history(file_id: str):
    get_file_or_404(file_id).state.history.clear()
    return {"success": True}


# ============= Boundaries and partitions =============


@router.get("/{file_id}/boundaries")
async def list_boundaries(file_id: str):
    state = get_file_or_404(file_id).state
    return {"boundaries": [b.to_dict() for b in state.partitions.get_boundaries()]}


@router.post("/{file_id}/boundaries")
async def add_boundary(file_id: str, request: BoundaryRequest):
    """Mark an existing sequence, or append/insert it into the file first."""
    file = get_file_or_404(file_id)
    state = file.state
    validate_input_bits(request.sequence)
    try:
        if request.mode == "mark":
            boundary = state.add_boundary(request.sequence, request.description, request.color)
        elif request.mode == "append":
            boundary = state.append_boundary(request.sequence, request.description, request.color)
        elif request.mode == "insert":
            if request.position is None:
                raise HTTPException(status_code=400, detail="Insert mode requires 'position'")
            boundary = state.insert_boundary(
                request.sequence, request.description, request.color, request.position
            )
        else:
            raise HTTPException(status_code=400, detail=f"Unknown boundary mode: {request.mode}")
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    file_manager.touch(file)
    return boundary.to_dict()


@router.get("/{file_id}/boundaries/unique")
async def suggest_unique_boundary(file_id: str, min_length: int = 8, max_length: int = 32):
    """Shortest sequence that does not occur in the file."""
    if not 1 <= min_length <= max_length:
        raise HTTPException(status_code=400, detail="Require 1 <= min_length <= max_length")
    bits = get_file_or_404(file_id).state.bits
    sequence = find_unique_boundary(bits, min_length, max_length)
    return {"sequence": sequence, "found": sequence is not None}


@router.delete("/{file_id}/boundaries/{boundary_id}")
async def remove_boundary(file_id: str, boundary_id: str):
    state = get_file_or_404(file_id).state
    if state.remove_boundary(boundary_id) is None:
        raise HTTPException(status_code=404, detail=f"Boundary '{boundary_id}' not found")
    return {"success": True, "deleted": boundary_id}


@router.post("/{file_id}/boundaries/{boundary_id}/toggle")
async def toggle_boundary(file_id: str, boundary_id: str):
    state = get_file_or_404(file_id).state
    highlight = state.partitions.toggle_highlight(boundary_id)
    if highlight is None:
        raise HTTPException(status_code=404, detail=f"Boundary '{boundary_id}' not found")
    return {"id": boundary_id, "highlight": highlight}


@router.get("/{file_id}/partitions")
async def list_partitions(file_id: str, include_bits: bool = False):
    partitions = get_file_or_404(file_id).state.get_partitions()
    return {"partitions": [p.to_dict(include_bits) for p in partitions], "total": len(partitions)}


# ============= Saved sequences =============


@router.get("/{file_id}/sequences")
async def list_sequences(file_id: str, sort: str = "serial"):
    state = get_file_or_404(file_id).state
    try:
        sequences = state.sequences.get_all(sort)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"sequences": [s.to_dict() for s in sequences], "total": len(sequences)}


@router.post("/{file_id}/sequences")
async def search_sequences(file_id: str, request: SequenceSearchRequest):
    """Search for each sequence in the query and save the new ones."""
    state = get_file_or_404(file_id).state
    sequences = parse_sequences(request.query)
    if not sequences:
        raise HTTPException(status_code=400, detail="Query contains no valid binary sequences")
    added, skipped = state.add_sequences(sequences, request.color)
    return {"added": [s.to_dict() for s in added], "skipped": skipped, "total": len(state.sequences)}


@router.get("/{file_id}/sequences/export")
async def export_sequences(file_id: str):
    return {"sequences": get_file_or_404(file_id).state.sequences.export()}


@router.delete("/{file_id}/sequences")
async def clear_sequences(file_id: str):
    get_file_or_404(file_id).state.sequences.clear()
    return {"success": True}


@router.delete("/{file_id}/sequences/{sequence_id}")
async def remove_sequence(file_id: str, sequence_id: str):
    state = get_file_or_404(file_id).state
    if state.sequences.remove(sequence_id) is None:
        raise HTTPException(status_code=404, detail=f"Sequence '{sequence_id}' not found")
    return {"success": True, "deleted": sequence_id}


@router.post("/{file_id}/sequences/{sequence_id}/toggle")
async def toggle_sequence(file_id: str, sequence_id: str):
    state = get_file_or_404(file_id).state
    highlighted = state.sequences.toggle_highlight(sequence_id)
    if highlighted is None:
        raise HTTPException(status_code=404, detail=f"Sequence '{sequence_id}' not found")
    return {"id": sequence_id, "highlighted": highlighted}


@router.get("/{file_id}/highlights")
async def list_highlights(file_id: str):
    ranges: List[Dict[str, Any]] = get_file_or_404(file_id).state.get_highlight_ranges()
    return {"ranges": ranges}
