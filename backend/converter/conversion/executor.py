"""Run conversions on the transcoding engine.

A conversion is planned first (an ordered list of codec candidates) so that
impossible requests are rejected before the engine is ever loaded. Execution
then tries each candidate in order and keeps the first one that exits cleanly
with non-empty output.
"""
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from converter.config import (
    ICON_SIZE,
    LOG_TAIL_LINES,
    RASTERIZER_REQUIRED_EXTENSIONS,
    VECTOR_OUTPUT_FORMATS,
)
from converter.conversion.exceptions import (
    EngineExecutionFailed,
    NoAudioTrack,
    UnsupportedConversion,
)
from converter.conversion.formats import media_type_for
from converter.conversion.models import CodecCandidate, ConversionResult, Kind

logger = logging.getLogger("converter.executor")

# Drop video, subtitle and data streams; keep the first audio stream if any.
AUDIO_ONLY = ("-vn", "-sn", "-dn", "-map", "0:a:0?")

# Image muxers write one file; animated inputs must stop after the first frame.
SINGLE_FRAME = ("-frames:v", "1")

_NO_STREAM_MARKERS = ("does not contain any stream", "matches no streams")


def _candidate(fmt: str, *args: str) -> CodecCandidate:
    return CodecCandidate(format_code=fmt, args=args, result_media_type=media_type_for(fmt))


_MP3 = _candidate("mp3", *AUDIO_ONLY, "-c:a", "libmp3lame", "-q:a", "2")
_M4A = _candidate("m4a", *AUDIO_ONLY, "-c:a", "aac", "-b:a", "192k")
_OGG = _candidate("ogg", *AUDIO_ONLY, "-c:a", "libvorbis", "-q:a", "5")
_OPUS = _candidate("opus", *AUDIO_ONLY, "-c:a", "libopus", "-b:a", "128k")
_FLAC = _candidate("flac", *AUDIO_ONLY, "-c:a", "flac")
_WAV = _candidate("wav", *AUDIO_ONLY, "-c:a", "pcm_s16le", "-ar", "44100", "-ac", "2")

AUDIO_CANDIDATES: dict[str, tuple[CodecCandidate, ...]] = {
    "mp3": (_MP3, _M4A, _OGG),
    "wav": (_WAV,),
    "m4a": (_M4A, _MP3),
    "ogg": (_OGG, _OPUS, _MP3),
    "opus": (_OPUS, _OGG),
    "flac": (_FLAC, _WAV),
}

VIDEO_CANDIDATES: dict[str, tuple[CodecCandidate, ...]] = {
    "mp4": (
        _candidate("mp4", "-c:v", "libx264", "-preset", "medium", "-crf", "23",
                   "-pix_fmt", "yuv420p", "-c:a", "aac", "-movflags", "+faststart"),
        _candidate("mp4", "-c:v", "mpeg4", "-q:v", "5", "-c:a", "aac"),
    ),
    "webm": (
        _candidate("webm", "-c:v", "libvpx-vp9", "-crf", "32", "-b:v", "0", "-c:a", "libopus"),
        _candidate("webm", "-c:v", "libvpx", "-b:v", "1M", "-c:a", "libvorbis"),
    ),
}

IMAGE_ARGS: dict[str, tuple[str, ...]] = {
    "png": (),
    "jpg": ("-q:v", "2"),
    "webp": ("-c:v", "libwebp", "-quality", "90"),
    "avif": ("-c:v", "libaom-av1", "-still-picture", "1", "-crf", "30"),
    "gif": (),
    "bmp": (),
    "tiff": (),
    "ico": ("-vf", f"scale={ICON_SIZE}:{ICON_SIZE}"),
}


@dataclass
class ConversionPlan:
    kind: Kind
    input_extension: str
    requested_format: str
    candidates: tuple[CodecCandidate, ...]

    @property
    def input_name(self) -> str:
        return f"input.{self.input_extension or 'bin'}"

    @property
    def extracts_audio(self) -> bool:
        return self.candidates[0].args[: len(AUDIO_ONLY)] == AUDIO_ONLY


@dataclass
class _Attempt:
    candidate: CodecCandidate
    exit_code: int
    output: bytes

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and len(self.output) > 0


def build_plan(kind: Kind, input_extension: str, output_format_code: str) -> ConversionPlan:
    """Ordered candidates for the request, or UnsupportedConversion."""
    in_ext = input_extension.lower()
    out = output_format_code.lower()
    if kind == Kind.IMAGE:
        if in_ext in RASTERIZER_REQUIRED_EXTENSIONS:
            raise UnsupportedConversion(
                f".{in_ext} files need a PostScript rasterizer, which is not available"
            )
        if out in VECTOR_OUTPUT_FORMATS:
            raise UnsupportedConversion(f"Cannot convert raster image .{in_ext} to vector format {out}")
        if out not in IMAGE_ARGS:
            raise UnsupportedConversion(f"No image encoder for {out}")
        candidates = (_candidate(out, *IMAGE_ARGS[out], *SINGLE_FRAME),)
    elif kind == Kind.VIDEO:
        candidates = AUDIO_CANDIDATES.get(out) or VIDEO_CANDIDATES.get(out) or ()
    elif kind == Kind.AUDIO:
        candidates = AUDIO_CANDIDATES.get(out, ())
    else:
        candidates = ()
    if not candidates:
        raise UnsupportedConversion(f"No conversion from {kind.value} .{in_ext} to {out}")
    return ConversionPlan(kind, in_ext, out, tuple(candidates))


class TranscodeExecutor:
    """Executes plans on an engine, collecting its recent log lines."""

    def __init__(self, log_tail: Optional[deque] = None):
        self._log_tail = log_tail if log_tail is not None else deque(maxlen=LOG_TAIL_LINES)

    def recent_log(self) -> list[str]:
        return list(self._log_tail)

    async def execute(
        self,
        engine: Any,
        input_bytes: bytes,
        input_extension: str,
        kind: Kind,
        output_format_code: str,
    ) -> ConversionResult:
        plan = build_plan(kind, input_extension, output_format_code)
        return await self.run(engine, input_bytes, plan)

    async def run(self, engine: Any, input_bytes: bytes, plan: ConversionPlan) -> ConversionResult:
        self._log_tail.clear()
        names = [plan.input_name] + sorted({c.output_name for c in plan.candidates})
        async with _scratch_files(engine, names):
            await engine.write_file(plan.input_name, input_bytes)
            attempts: list[_Attempt] = []
            for candidate in plan.candidates:
                attempt = await self._attempt(engine, plan, candidate)
                attempts.append(attempt)
                if attempt.succeeded:
                    return self._result(plan, attempt, len(attempts))
                if plan.extracts_audio and self._source_has_no_audio(attempt):
                    raise NoAudioTrack(
                        "Source has no audio stream to extract", log_tail=self.recent_log()
                    )
                logger.warning(
                    "Candidate %s (%s) failed with exit code %s, output %d bytes",
                    candidate.format_code, " ".join(candidate.args), attempt.exit_code, len(attempt.output),
                )
        tried = ", ".join(f"{a.candidate.format_code}(exit {a.exit_code})" for a in attempts)
        raise EngineExecutionFailed(
            f"All codec candidates failed for {plan.requested_format}: {tried}",
            log_tail=self.recent_log(),
        )

    async def _attempt(self, engine: Any, plan: ConversionPlan, candidate: CodecCandidate) -> _Attempt:
        # an earlier candidate may have left a partial file under the same name
        await _discard(engine, candidate.output_name)
        try:
            code = await engine.exec(candidate.build_command(plan.input_name))
        except Exception as e:
            logger.warning("Engine raised while running %s: %s", candidate.format_code, e)
            return _Attempt(candidate, -1, b"")
        try:
            output = bytes(await engine.read_file(candidate.output_name))
        except FileNotFoundError:
            output = b""
        return _Attempt(candidate, code, output)

    def _source_has_no_audio(self, attempt: _Attempt) -> bool:
        if attempt.output:
            return False
        if attempt.exit_code == 0:
            return True
        return any(marker in line for line in self._log_tail for marker in _NO_STREAM_MARKERS)

    @staticmethod
    def _result(plan: ConversionPlan, attempt: _Attempt, attempt_no: int) -> ConversionResult:
        note = None
        if attempt.candidate.format_code != plan.requested_format:
            note = (
                f"{plan.requested_format} encoder unavailable; "
                f"encoded as {attempt.candidate.format_code} instead"
            )
        elif attempt_no > 1:
            note = f"Used fallback encoder #{attempt_no}"
        return ConversionResult(
            output_bytes=attempt.output,
            result_media_type=attempt.candidate.result_media_type,
            actual_format_code=attempt.candidate.format_code,
            diagnostic_note=note,
        )


@asynccontextmanager
async def _scratch_files(engine: Any, names: list[str]):
    """Delete the named virtual files on every exit path, ignoring only delete errors."""
    try:
        yield
    finally:
        for name in names:
            await _discard(engine, name)


async def _discard(engine: Any, name: str) -> None:
    try:
        await engine.delete_file(name)
    except Exception:
        logger.debug("Could not delete virtual file %s", name)
