"""Shared test fixtures for the drop converter."""
import os
import tempfile
from pathlib import Path

# Point storage at a scratch area before converter.config is imported.
_SCRATCH = Path(tempfile.mkdtemp(prefix="converter-tests-"))
os.environ.setdefault("UPLOAD_DIR", str(_SCRATCH / "uploads"))
os.environ.setdefault("OUTPUT_DIR", str(_SCRATCH / "outputs"))
os.environ.setdefault("ENGINE_DIR", str(_SCRATCH / "engine"))
os.environ.setdefault("ENGINE_CACHE_DIR", str(_SCRATCH / "engine-cache"))

import pytest  # noqa: E402

from converter.conversion.models import InputFile  # noqa: E402
from fakes import FakeEngine, FakeFactory, image_bytes, make_loader  # noqa: E402


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def factory(engine: FakeEngine) -> FakeFactory:
    return FakeFactory(engine)


@pytest.fixture
def loader(tmp_path: Path, factory: FakeFactory):
    """Loader whose local assets are present, backed by the fake engine."""
    return make_loader(tmp_path, factory=factory, local=True)


@pytest.fixture
def make_file(tmp_path: Path):
    """Write bytes to disk and wrap them as an InputFile."""

    def _make(name: str, data: bytes = b"data", media_type: str = "") -> InputFile:
        path = tmp_path / "in" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return InputFile(name=name, byte_size=len(data), declared_media_type=media_type, path=path)

    return _make


@pytest.fixture
def png_bytes() -> bytes:
    return image_bytes("PNG")
