"""Legal output formats per kind, and media types per output format."""
from collections import Counter
from types import MappingProxyType
from typing import Iterable, Mapping

from converter.conversion.classifier import classify
from converter.conversion.models import InputFile, Kind, OutputFormatOption


def _options(*pairs: tuple[str, str]) -> tuple[OutputFormatOption, ...]:
    return tuple(OutputFormatOption(code, label) for code, label in pairs)


_AUDIO_OUTPUTS = (
    ("mp3", "MP3 (audio/mpeg)"),
    ("wav", "WAV (audio/wav)"),
    ("m4a", "M4A (audio/mp4)"),
    ("ogg", "OGG Vorbis (audio/ogg)"),
    ("opus", "Opus (audio/ogg)"),
    ("flac", "FLAC (audio/flac)"),
)

OUTPUT_MATRIX: Mapping[Kind, tuple[OutputFormatOption, ...]] = MappingProxyType({
    Kind.IMAGE: _options(
        ("png", "PNG (image/png)"),
        ("jpg", "JPG (image/jpeg)"),
        ("webp", "WEBP (image/webp)"),
        ("avif", "AVIF (image/avif)"),
        ("gif", "GIF (image/gif)"),
        ("bmp", "BMP (image/bmp)"),
        ("tiff", "TIFF (image/tiff)"),
        ("ico", "ICO (image/x-icon, 256x256)"),
    ),
    Kind.VIDEO: _options(
        *_AUDIO_OUTPUTS,
        ("mp4", "MP4 (video/mp4, H.264)"),
        ("webm", "WEBM (video/webm, VP9)"),
    ),
    Kind.AUDIO: _options(*_AUDIO_OUTPUTS),
    Kind.DOCUMENT: _options(
        ("txt", "TXT (text/plain, passthrough; other documents need a server)"),
    ),
    Kind.UNKNOWN: (),
})

MEDIA_TYPES: Mapping[str, str] = MappingProxyType({
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "avif": "image/avif",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "tiff": "image/tiff",
    "ico": "image/x-icon",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "ogg": "audio/ogg",
    "opus": "audio/ogg",
    "flac": "audio/flac",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "txt": "text/plain",
})


def options_for(kind: Kind) -> tuple[OutputFormatOption, ...]:
    return OUTPUT_MATRIX.get(kind, ())


def format_codes_for(kind: Kind) -> frozenset[str]:
    return frozenset(o.format_code for o in options_for(kind))


def media_type_for(format_code: str) -> str:
    return MEDIA_TYPES.get(format_code.lower(), "application/octet-stream")


def options_for_files(files: Iterable[InputFile]) -> list[OutputFormatOption]:
    """Union of legal outputs across a mixed queue, in matrix order."""
    kinds = {classify(f) for f in files}
    seen: set[str] = set()
    out: list[OutputFormatOption] = []
    for kind in OUTPUT_MATRIX:
        if kind not in kinds:
            continue
        for opt in OUTPUT_MATRIX[kind]:
            if opt.format_code not in seen:
                seen.add(opt.format_code)
                out.append(opt)
    return out


def default_format(files: Iterable[InputFile]) -> str:
    """jpg when images dominate, mp3 when media does, else the first option ("" if none)."""
    files = list(files)
    options = options_for_files(files)
    if not options:
        return ""
    counts = Counter(classify(f) for f in files)
    media_count = counts[Kind.VIDEO] + counts[Kind.AUDIO]
    preferred = "jpg" if counts[Kind.IMAGE] >= media_count else "mp3"
    codes = [o.format_code for o in options]
    return preferred if preferred in codes else codes[0]
