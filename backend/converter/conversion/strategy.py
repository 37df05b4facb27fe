"""Choose between the in-process raster path and the transcoding engine."""
from converter.config import FAST_DECODABLE_EXTENSIONS, FAST_ENCODABLE_FORMATS
from converter.conversion.models import Kind, Strategy


def select_strategy(input_extension: str, output_format_code: str, kind: Kind) -> Strategy:
    if (
        kind == Kind.IMAGE
        and input_extension.lower() in FAST_DECODABLE_EXTENSIONS
        and output_format_code.lower() in FAST_ENCODABLE_FORMATS
    ):
        return Strategy.FAST
    return Strategy.ENGINE
