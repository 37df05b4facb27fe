"""Single-file conversion: validation, strategy choice and the fast/engine paths."""
import asyncio
import logging
from typing import Callable, Optional

from converter.config import (
    ENGINE_PROGRESS_RANGE,
    MAX_INPUT_BYTES,
    PREPARE_PROGRESS,
)
from converter.conversion.classifier import classify, extension_of
from converter.conversion.exceptions import (
    EngineLoadFailed,
    InputTooLarge,
    UnrecognizedFormat,
    UnsupportedConversion,
)
from converter.conversion.executor import TranscodeExecutor, build_plan
from converter.conversion.formats import format_codes_for, media_type_for
from converter.conversion.loader import EngineLoader
from converter.conversion.models import ConversionResult, InputFile, Kind, Strategy
from converter.conversion.raster import clamp_quality, reencode
from converter.conversion.strategy import select_strategy

logger = logging.getLogger("converter.service")

# item-local percentage, 0..100
ItemProgress = Callable[[float], None]

DOCUMENT_NOTE = "Returned unchanged; converting richer document formats needs a server."


def engine_percent(fraction: float) -> float:
    """Map the engine's 0..1 fraction into the item's engine span."""
    lo, hi = ENGINE_PROGRESS_RANGE
    return lo + max(0.0, min(1.0, fraction)) * (hi - lo)


class ConversionService:
    """Converts one file at a time. Owns the engine loader and executor."""

    def __init__(
        self,
        loader: Optional[EngineLoader] = None,
        executor: Optional[TranscodeExecutor] = None,
        max_input_bytes: int = MAX_INPUT_BYTES,
    ):
        self.loader = loader or EngineLoader()
        self.executor = executor or TranscodeExecutor(self.loader.log_tail)
        self.max_input_bytes = max_input_bytes
        logger.info("ConversionService initialized (max input %s bytes)", max_input_bytes)

    def check_input(self, file: InputFile, output_format_code: str) -> Kind:
        """Cheap per-file rejection before any engine work. Returns the file's kind."""
        if file.byte_size > self.max_input_bytes:
            raise InputTooLarge(
                f"{file.name} is {file.byte_size} bytes; the limit is {self.max_input_bytes} bytes"
            )
        kind = classify(file)
        codes = format_codes_for(kind)
        if not codes:
            raise UnrecognizedFormat(f"Unrecognized file type: {file.name}")
        if output_format_code not in codes:
            raise UnsupportedConversion(
                f"{file.name} ({kind.value}) cannot be converted to {output_format_code}"
            )
        return kind

    async def convert(
        self,
        file: InputFile,
        output_format_code: str,
        quality: Optional[float] = None,
        on_progress: Optional[ItemProgress] = None,
        engine_failure: Optional[EngineLoadFailed] = None,
    ) -> ConversionResult:
        """Convert file. quality is the 0-100 slider value (jpg/webp only).

        engine_failure short-circuits engine-dependent work with an earlier load error.
        """
        fmt = output_format_code.lower()
        kind = self.check_input(file, fmt)
        ext = extension_of(file.name)
        report = on_progress or (lambda pct: None)

        if kind == Kind.DOCUMENT:
            return await self._passthrough_document(file, ext, fmt)

        data = await asyncio.to_thread(file.read_bytes)
        if select_strategy(ext, fmt, kind) == Strategy.FAST:
            try:
                return await self._convert_fast(data, fmt, quality)
            except Exception as e:
                logger.warning("Fast path failed for %s, using engine: %s", file.name, e)

        plan = build_plan(kind, ext, fmt)
        if engine_failure is not None:
            raise engine_failure
        report(PREPARE_PROGRESS)
        engine = await self.loader.ensure_ready()
        self.loader.set_progress_listener(lambda fraction: report(engine_percent(fraction)))
        try:
            result = await self.executor.run(engine, data, plan)
        finally:
            self.loader.set_progress_listener(None)
        logger.info(
            "Converted %s -> %s via engine (%d bytes)",
            file.name, result.actual_format_code, len(result.output_bytes),
        )
        return result

    async def _convert_fast(self, data: bytes, fmt: str, quality: Optional[float]) -> ConversionResult:
        q = clamp_quality(quality) if fmt in ("jpg", "webp") else None
        out, media_type = await asyncio.to_thread(reencode, data, fmt, q)
        return ConversionResult(output_bytes=out, result_media_type=media_type, actual_format_code=fmt)

    async def _passthrough_document(self, file: InputFile, ext: str, fmt: str) -> ConversionResult:
        if ext != "txt" or fmt != "txt":
            raise UnsupportedConversion(
                f"{file.name}: document conversion to {fmt} needs a server; only plain text passes through"
            )
        data = await asyncio.to_thread(file.read_bytes)
        if not data:
            raise UnsupportedConversion(f"{file.name} is empty; nothing to pass through")
        return ConversionResult(
            output_bytes=data,
            result_media_type=media_type_for("txt"),
            actual_format_code="txt",
            diagnostic_note=DOCUMENT_NOTE,
        )
