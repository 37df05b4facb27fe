"""API routes for the drop page: queue, convert, progress and downloads."""
import asyncio
import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse

from converter.batch import ConversionQueue, format_bytes
from converter.config import DEFAULT_QUALITY, OUTPUT_DIR, UPLOAD_DIR
from converter.conversion.formats import OUTPUT_MATRIX, options_for_files
from converter.conversion.models import BatchItem, InputFile
from converter.conversion.service import ConversionService

logger = logging.getLogger("converter.api")
router = APIRouter(prefix="/api", tags=["converter"])

CHUNK_SIZE = 1024 * 1024


def get_queue(request: Request) -> ConversionQueue:
    return request.app.state.queue


def get_service(request: Request) -> ConversionService:
    return request.app.state.service


def get_results(request: Request) -> dict[str, BatchItem]:
    return request.app.state.results


def _item_to_dict(item: BatchItem) -> dict:
    out = {
        "item_id": item.item_id,
        "filename": item.input_file.name,
        "status": item.status.value,
        "output_name": item.output_name,
        "error": item.error,
        "log_tail": item.log_tail,
    }
    if item.result is not None:
        size = len(item.result.output_bytes)
        out.update({
            "media_type": item.result.result_media_type,
            "format": item.result.actual_format_code,
            "size": size,
            "size_label": format_bytes(size),
            "note": item.result.diagnostic_note,
        })
    return out


def _discard_stored(paths: list[Path]) -> None:
    for p in paths:
        try:
            if p.is_dir():
                shutil.rmtree(p, ignore_errors=True)
            elif p.exists():
                p.unlink()
        except OSError as e:
            logger.warning("Could not remove %s: %s", p, e)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits(service: ConversionService = Depends(get_service)):
    return {
        "max_input_bytes": service.max_input_bytes,
        "max_input_label": format_bytes(service.max_input_bytes),
        "default_quality": DEFAULT_QUALITY,
    }


@router.get("/formats")
def get_formats():
    return {
        kind.value: [{"value": o.format_code, "label": o.display_label} for o in options]
        for kind, options in OUTPUT_MATRIX.items()
    }


@router.get("/engine")
def engine_state(service: ConversionService = Depends(get_service)):
    return {"state": service.loader.current_state().value, "source": service.loader.source}


@router.post("/queue")
async def queue_files(
    files: list[UploadFile] = File(...),
    queue: ConversionQueue = Depends(get_queue),
    service: ConversionService = Depends(get_service),
):
    """Store dropped files and replace the queue. Oversized files are kept and rejected at convert time."""
    if queue.orchestrator.converting:
        raise HTTPException(409, "A conversion is in progress")
    _discard_stored([f.path for f in queue.files if f.path])
    limit = service.max_input_bytes

    accepted: list[InputFile] = []
    for upload in files:
        name = Path(upload.filename or "file").name
        dest = UPLOAD_DIR / f"{uuid.uuid4().hex}_{name}"
        total = 0
        try:
            with open(dest, "wb") as f:
                while chunk := await upload.read(CHUNK_SIZE):
                    total += len(chunk)
                    if total > limit:
                        break
                    f.write(chunk)
        except OSError as e:
            logger.exception("Upload failed for %s: %s", name, e)
            dest.unlink(missing_ok=True)
            raise HTTPException(500, f"Upload failed: {name}")
        if total > limit:
            dest.unlink(missing_ok=True)
            logger.warning("%s exceeds %s bytes; it will be rejected", name, limit)
        accepted.append(InputFile(
            name=name,
            byte_size=total,
            declared_media_type=upload.content_type or "",
            path=dest if total <= limit else None,
        ))

    kept = queue.replace(accepted)
    _discard_stored([f.path for f in accepted if f.path and f not in kept])
    return queue.summary()


@router.get("/queue")
def queue_summary(queue: ConversionQueue = Depends(get_queue)):
    return queue.summary()


@router.delete("/queue")
def clear_queue(
    queue: ConversionQueue = Depends(get_queue),
    results: dict[str, BatchItem] = Depends(get_results),
):
    stored = [f.path for f in queue.files if f.path]
    if not queue.clear():
        raise HTTPException(409, "Cannot clear while a conversion is in progress")
    _discard_stored(stored + [OUTPUT_DIR / item_id for item_id in results])
    results.clear()
    return {"ok": True}


@router.post("/convert")
async def convert_queue(
    fmt: str = Query(..., alias="format", description="Output format code, e.g. jpg or mp3"),
    name: str = Query("", description="Optional base name for every output file"),
    quality: Optional[float] = Query(None, ge=0, le=100, description="jpg/webp quality (0-100)"),
    queue: ConversionQueue = Depends(get_queue),
    results: dict[str, BatchItem] = Depends(get_results),
):
    """Convert every queued file to one format. Per-file failures are reported, not raised."""
    if queue.orchestrator.converting:
        raise HTTPException(409, "A conversion is already in progress")
    if not queue.files:
        raise HTTPException(400, "No files queued")
    fmt = fmt.strip().lower()
    if fmt not in {o.format_code for o in options_for_files(queue.files)}:
        raise HTTPException(400, f"Format not available for the queued files: {fmt}")

    items = await queue.orchestrator.convert_batch(queue.files, fmt, base_name=name or None, quality=quality)
    for item in items:
        if item.result is None:
            continue
        out_dir = (OUTPUT_DIR / item.item_id).resolve()
        target = (out_dir / item.output_name).resolve()
        if target.parent != out_dir:
            logger.error("Refusing to write %s outside %s", item.output_name, out_dir)
            item.result = None
            item.error = f"{item.input_file.name}: invalid output name {item.output_name!r}"
            continue
        out_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, item.result.output_bytes)
        results[item.item_id] = item
    return {"items": [_item_to_dict(i) for i in items]}


@router.get("/progress")
def get_progress(queue: ConversionQueue = Depends(get_queue)):
    p = queue.orchestrator.progress.current
    return {
        "completed": p.completed_count,
        "total": p.total_count,
        "label": p.current_label,
        "percent": round(p.percent),
        "converting": queue.orchestrator.converting,
    }


@router.get("/download/{item_id}/{filename}")
def download_output(item_id: str, filename: str, results: dict[str, BatchItem] = Depends(get_results)):
    item = results.get(item_id)
    if not item or item.result is None:
        raise HTTPException(404, "Result not found")
    if filename != item.output_name:
        raise HTTPException(403, "File not part of this result")
    path = OUTPUT_DIR / item_id / filename
    if not path.is_file():
        raise HTTPException(404, "File not found")
    return FileResponse(path, filename=filename, media_type=item.result.result_media_type)
