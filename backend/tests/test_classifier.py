"""Tests for kind classification."""
import pytest

from converter.config import (
    AUDIO_EXTENSIONS,
    DOCUMENT_EXTENSIONS,
    IMAGE_EXTENSIONS,
    VIDEO_EXTENSIONS,
)
from converter.conversion.classifier import classify, extension_of, stem_of
from converter.conversion.models import InputFile, Kind


def _file(name: str, media_type: str = "") -> InputFile:
    return InputFile(name=name, byte_size=1, declared_media_type=media_type)


class TestExtensionOf:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("photo.PNG", "png"),
            ("archive.tar.gz", "gz"),
            ("noext", ""),
            ("trailing.", ""),
            ("odd.we-ird", ""),
            ("clip.mp4", "mp4"),
            ("", ""),
        ],
    )
    def test_extension(self, name, expected):
        assert extension_of(name) == expected

    def test_stem(self):
        assert stem_of("holiday.photo.jpg") == "holiday.photo"
        assert stem_of("README") == "README"


class TestClassify:
    @pytest.mark.parametrize(
        "extensions,kind",
        [
            (IMAGE_EXTENSIONS, Kind.IMAGE),
            (VIDEO_EXTENSIONS, Kind.VIDEO),
            (AUDIO_EXTENSIONS, Kind.AUDIO),
            (DOCUMENT_EXTENSIONS, Kind.DOCUMENT),
        ],
    )
    def test_every_extension_in_set(self, extensions, kind):
        for ext in extensions:
            assert classify(_file(f"sample.{ext}")) == kind, ext

    def test_extension_sets_are_disjoint(self):
        sets = [IMAGE_EXTENSIONS, VIDEO_EXTENSIONS, AUDIO_EXTENSIONS, DOCUMENT_EXTENSIONS]
        for i, a in enumerate(sets):
            for b in sets[i + 1:]:
                assert not a & b

    def test_extension_wins_over_media_type(self):
        assert classify(_file("clip.mp4", "audio/mp4")) == Kind.VIDEO

    @pytest.mark.parametrize(
        "media_type,kind",
        [
            ("image/x-unknown", Kind.IMAGE),
            ("video/quicktime", Kind.VIDEO),
            ("audio/webm", Kind.AUDIO),
            ("application/zip", Kind.UNKNOWN),
            ("", Kind.UNKNOWN),
        ],
    )
    def test_media_type_fallback(self, media_type, kind):
        assert classify(_file("recording", media_type)) == kind

    def test_unknown_extension_uses_media_type(self):
        assert classify(_file("capture.raw", "image/x-raw")) == Kind.IMAGE
        assert classify(_file("bundle.zip", "application/zip")) == Kind.UNKNOWN

    def test_stable_across_calls(self):
        f = _file("song.flac", "audio/flac")
        assert {classify(f) for _ in range(5)} == {Kind.AUDIO}
