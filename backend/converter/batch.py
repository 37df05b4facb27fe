"""Batch conversion over the queued files, with per-item failure isolation."""
import logging
import uuid
from pathlib import PurePosixPath
from typing import Iterable, Optional

from converter.conversion.classifier import stem_of
from converter.conversion.exceptions import ConversionError, EngineLoadFailed
from converter.conversion.formats import default_format, options_for_files
from converter.conversion.models import (
    BatchItem,
    BatchProgress,
    InputFile,
    ProgressCallback,
)
from converter.conversion.service import ConversionService

logger = logging.getLogger("converter.batch")


def format_bytes(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{value:.0f} {units[i]}" if value >= 10 or i == 0 else f"{value:.1f} {units[i]}"


def _safe_stem(name: str) -> str:
    """Last path component only, without leading/trailing dots or spaces."""
    return PurePosixPath(name.replace("\\", "/")).name.strip().strip(".").strip()


def output_name_for(file: InputFile, format_code: str, base_name: Optional[str] = None) -> str:
    base = _safe_stem(base_name or "") or _safe_stem(stem_of(file.name)) or "output"
    return f"{base}.{format_code}"


class ProgressReporter:
    """Clamps to [0, 100] and never moves backwards within a run."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self.current = BatchProgress(completed_count=0, total_count=0)

    def reset(self, total: int) -> None:
        self.current = BatchProgress(completed_count=0, total_count=total)
        self._emit()

    def update(self, percent: float, completed: Optional[int] = None, label: Optional[str] = None) -> None:
        pct = max(0.0, min(100.0, percent))
        self.current.percent = max(self.current.percent, pct)
        if completed is not None:
            self.current.completed_count = completed
        if label:
            self.current.current_label = label
        self._emit()

    def _emit(self) -> None:
        if self._callback:
            self._callback(self.current)


class BatchOrchestrator:
    """Runs one batch at a time; a second call while one runs is a no-op."""

    def __init__(self, service: ConversionService, on_progress: Optional[ProgressCallback] = None):
        self.service = service
        self.progress = ProgressReporter(on_progress)
        self._converting = False

    @property
    def converting(self) -> bool:
        return self._converting

    async def convert_batch(
        self,
        files: list[InputFile],
        output_format_code: str,
        base_name: Optional[str] = None,
        quality: Optional[float] = None,
    ) -> list[BatchItem]:
        if self._converting:
            logger.warning("Batch already in progress; ignoring new request")
            return []
        if not files or not output_format_code:
            return []
        self._converting = True
        try:
            return await self._run(list(files), output_format_code.lower(), base_name, quality)
        finally:
            self._converting = False

    async def _run(
        self,
        files: list[InputFile],
        fmt: str,
        base_name: Optional[str],
        quality: Optional[float],
    ) -> list[BatchItem]:
        total = len(files)
        items: list[BatchItem] = []
        load_failure: Optional[EngineLoadFailed] = None
        self.progress.reset(total)

        for done, file in enumerate(files, start=1):
            label = f"{done}/{total}"
            start = (done - 1) / total * 100
            span = 100 / total
            self.progress.update(start, label=f"Processing {label}: {file.name}")

            def on_item_progress(pct: float, start: float = start, span: float = span) -> None:
                self.progress.update(start + span * pct / 100)

            item = BatchItem(input_file=file, item_id=uuid.uuid4().hex)
            try:
                result = await self.service.convert(
                    file, fmt, quality=quality, on_progress=on_item_progress, engine_failure=load_failure,
                )
                item.result = result
                item.output_name = output_name_for(file, result.actual_format_code, base_name)
                logger.info("Converted %s -> %s", file.name, item.output_name)
            except EngineLoadFailed as e:
                load_failure = e
                self._record_failure(item, e)
            except ConversionError as e:
                self._record_failure(item, e)
            except Exception as e:
                logger.exception("Unexpected failure converting %s", file.name)
                item.error = f"{file.name}: {e}"
            items.append(item)
            status = "Done" if item.result is not None else "Failed"
            self.progress.update(done / total * 100, completed=done, label=f"{status} {label}: {file.name}")

        self.progress.update(100, completed=total, label=f"Finished all ({total} files).")
        return items

    @staticmethod
    def _record_failure(item: BatchItem, error: ConversionError) -> None:
        item.error = f"{item.input_file.name}: {error}"
        item.log_tail = list(error.log_tail)
        logger.warning("Conversion failed for %s: %s", item.input_file.name, error)


class ConversionQueue:
    """The set of dropped files awaiting conversion."""

    def __init__(self, orchestrator: BatchOrchestrator):
        self.orchestrator = orchestrator
        self.files: list[InputFile] = []

    def replace(self, files: Iterable[InputFile]) -> list[InputFile]:
        """Queue files, discarding empty ones. Refused while a batch runs."""
        if self.orchestrator.converting:
            return []
        self.files = [f for f in files if f and f.byte_size > 0]
        return self.files

    def clear(self) -> bool:
        if self.orchestrator.converting:
            return False
        self.files = []
        self.orchestrator.progress.reset(0)
        return True

    def summary(self) -> dict:
        return {
            "files": [
                {"name": f.name, "size": f.byte_size, "size_label": format_bytes(f.byte_size)}
                for f in self.files
            ],
            "options": [
                {"value": o.format_code, "label": o.display_label}
                for o in options_for_files(self.files)
            ],
            "default_format": default_format(self.files),
        }
