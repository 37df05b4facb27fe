"""Errors raised while converting a single file.

Every error carries an optional tail of the engine log so the batch can attach
it to the failure record shown next to the file.
"""
from typing import Optional, Sequence


class ConversionError(Exception):
    """Base class for all per-file conversion failures."""

    def __init__(self, message: str, log_tail: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.log_tail: list[str] = list(log_tail or [])


class UnsupportedConversion(ConversionError):
    """No path exists for the requested kind, input extension and output format."""


class UnrecognizedFormat(ConversionError):
    """The file could not be classified, so it has no legal outputs."""


class InputTooLarge(ConversionError):
    """The file exceeds the configured size ceiling."""


class EngineLoadFailed(ConversionError):
    """Neither the local nor the remote engine assets could be initialized."""

    def __init__(self, message: str, missing: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.missing: list[str] = list(missing or [])


class EngineExecutionFailed(ConversionError):
    """Every codec candidate failed or produced empty output."""


class NoAudioTrack(ConversionError):
    """Audio extraction produced nothing because the source has no audio stream."""
