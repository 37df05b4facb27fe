"""Tests for the output matrix and strategy selection."""
import pytest

from converter.config import FAST_ENCODABLE_FORMATS
from converter.conversion.formats import (
    OUTPUT_MATRIX,
    default_format,
    format_codes_for,
    media_type_for,
    options_for,
    options_for_files,
)
from converter.conversion.models import InputFile, Kind, Strategy
from converter.conversion.strategy import select_strategy


def _file(name: str) -> InputFile:
    return InputFile(name=name, byte_size=1)


class TestOutputMatrix:
    def test_unknown_has_no_options(self):
        assert options_for(Kind.UNKNOWN) == ()

    @pytest.mark.parametrize("kind", [Kind.IMAGE, Kind.VIDEO, Kind.AUDIO, Kind.DOCUMENT])
    def test_known_kinds_non_empty_without_duplicates(self, kind):
        codes = [o.format_code for o in options_for(kind)]
        assert codes
        assert len(codes) == len(set(codes))

    def test_document_is_single_passthrough(self):
        (option,) = options_for(Kind.DOCUMENT)
        assert option.format_code == "txt"

    def test_matrix_is_read_only(self):
        with pytest.raises(TypeError):
            OUTPUT_MATRIX[Kind.UNKNOWN] = ()

    def test_fast_formats_are_image_options(self):
        assert FAST_ENCODABLE_FORMATS < format_codes_for(Kind.IMAGE)

    def test_every_option_has_media_type(self):
        for options in OUTPUT_MATRIX.values():
            for o in options:
                assert media_type_for(o.format_code) != "application/octet-stream", o.format_code

    def test_media_types(self):
        assert media_type_for("mp3") == "audio/mpeg"
        assert media_type_for("JPG") == "image/jpeg"
        assert media_type_for("xyz") == "application/octet-stream"


class TestQueueOptions:
    def test_mixed_queue_shows_union_in_matrix_order(self):
        codes = [o.format_code for o in options_for_files([_file("clip.mov"), _file("a.png")])]
        assert codes[:3] == ["png", "jpg", "webp"]
        assert "mp3" in codes and "mp4" in codes
        assert len(codes) == len(set(codes))

    def test_unknown_only_queue_has_no_options(self):
        assert options_for_files([_file("bundle.zip")]) == []
        assert default_format([_file("bundle.zip")]) == ""

    def test_default_prefers_jpg_for_images(self):
        assert default_format([_file("a.png"), _file("b.webp"), _file("c.mp4")]) == "jpg"

    def test_default_prefers_mp3_for_media(self):
        assert default_format([_file("a.png"), _file("b.mov"), _file("c.wav")]) == "mp3"

    def test_default_falls_back_to_first_option(self):
        assert default_format([_file("notes.txt")]) == "txt"


class TestSelectStrategy:
    @pytest.mark.parametrize(
        "ext,out,kind,expected",
        [
            ("png", "jpg", Kind.IMAGE, Strategy.FAST),
            ("jpeg", "webp", Kind.IMAGE, Strategy.FAST),
            ("gif", "png", Kind.IMAGE, Strategy.FAST),
            ("png", "avif", Kind.IMAGE, Strategy.ENGINE),
            ("heic", "jpg", Kind.IMAGE, Strategy.ENGINE),
            ("eps", "png", Kind.IMAGE, Strategy.ENGINE),
            ("mov", "mp3", Kind.VIDEO, Strategy.ENGINE),
            ("png", "jpg", Kind.VIDEO, Strategy.ENGINE),
        ],
    )
    def test_selection(self, ext, out, kind, expected):
        assert select_strategy(ext, out, kind) == expected
