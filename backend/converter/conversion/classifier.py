"""Map an input file to its content kind."""
import re

from converter.config import (
    AUDIO_EXTENSIONS,
    DOCUMENT_EXTENSIONS,
    IMAGE_EXTENSIONS,
    VIDEO_EXTENSIONS,
)
from converter.conversion.models import InputFile, Kind

_EXT_RE = re.compile(r"\.([a-z0-9]+)$")

_EXTENSION_KINDS = (
    (IMAGE_EXTENSIONS, Kind.IMAGE),
    (VIDEO_EXTENSIONS, Kind.VIDEO),
    (AUDIO_EXTENSIONS, Kind.AUDIO),
    (DOCUMENT_EXTENSIONS, Kind.DOCUMENT),
)

_MEDIA_TYPE_KINDS = {
    "image": Kind.IMAGE,
    "video": Kind.VIDEO,
    "audio": Kind.AUDIO,
}


def extension_of(name: str) -> str:
    """Lowercase extension without the dot, or "" when there is none."""
    m = _EXT_RE.search((name or "").lower())
    return m.group(1) if m else ""


def stem_of(name: str) -> str:
    return re.sub(r"\.[^.]+$", "", name or "")


def classify(file: InputFile) -> Kind:
    ext = extension_of(file.name)
    if ext:
        for extensions, kind in _EXTENSION_KINDS:
            if ext in extensions:
                return kind
    top_level = (file.declared_media_type or "").split("/", 1)[0].strip().lower()
    return _MEDIA_TYPE_KINDS.get(top_level, Kind.UNKNOWN)
