from .service import ConversionService
from .loader import EngineLoader
from .executor import TranscodeExecutor
from .models import ConversionResult, InputFile, Kind, OutputFormatOption

__all__ = [
    "ConversionService",
    "EngineLoader",
    "TranscodeExecutor",
    "ConversionResult",
    "InputFile",
    "Kind",
    "OutputFormatOption",
]
