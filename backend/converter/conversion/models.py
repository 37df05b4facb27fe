"""Conversion request/response models."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional


class Kind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    UNKNOWN = "unknown"


class Strategy(str, Enum):
    FAST = "fast"
    ENGINE = "engine"


class EngineState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


class ItemStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class InputFile:
    """A file accepted into the queue. `path` points at the uploaded bytes."""

    name: str
    byte_size: int
    declared_media_type: str = ""
    path: Optional[Path] = None

    def read_bytes(self) -> bytes:
        if self.path is None:
            raise FileNotFoundError(f"No data stored for {self.name}")
        return self.path.read_bytes()


@dataclass(frozen=True)
class OutputFormatOption:
    format_code: str
    display_label: str


@dataclass(frozen=True)
class CodecCandidate:
    format_code: str
    args: tuple[str, ...]
    result_media_type: str

    @property
    def output_name(self) -> str:
        return f"output.{self.format_code}"

    def build_command(self, input_name: str) -> list[str]:
        return ["-i", input_name, *self.args, self.output_name]


@dataclass
class ConversionResult:
    output_bytes: bytes
    result_media_type: str
    actual_format_code: str
    diagnostic_note: Optional[str] = None


@dataclass
class BatchProgress:
    completed_count: int
    total_count: int
    current_label: str = ""
    percent: float = 0.0


@dataclass
class BatchItem:
    """Outcome for one submitted file, in submission order."""

    input_file: InputFile
    item_id: str
    output_name: Optional[str] = None
    result: Optional[ConversionResult] = None
    error: Optional[str] = None
    log_tail: list[str] = field(default_factory=list)

    @property
    def status(self) -> ItemStatus:
        return ItemStatus.COMPLETED if self.result is not None else ItemStatus.FAILED


ProgressCallback = Callable[[BatchProgress], None]
