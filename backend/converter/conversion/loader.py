"""Lazy, single-flight loading of the transcoding engine.

State moves unloaded -> loading -> ready. Concurrent callers that find a load
in flight await the same pending task; a failed load rolls back to unloaded so
the next call starts a fresh attempt.

Load protocol:
1. Every asset must be present and executable in the local engine directory.
2. If so, initialize the engine against those files.
3. Otherwise fetch each asset from the pinned remote build (uncached GET),
   write it into the private cache directory and initialize against the copies.
4. If both fail, raise EngineLoadFailed naming what was missing or unreachable.
"""
import asyncio
import logging
import stat
import sys
from collections import deque
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence
from urllib.request import Request, urlopen

from converter.config import (
    ENGINE_ASSETS,
    ENGINE_CACHE_DIR,
    ENGINE_DIR,
    ENGINE_FETCH_TIMEOUT,
    ENGINE_PLATFORM,
    ENGINE_REMOTE_BASE,
    LOG_TAIL_LINES,
)
from converter.conversion.engine import FFmpegEngine
from converter.conversion.exceptions import EngineLoadFailed
from converter.conversion.models import EngineState

logger = logging.getLogger("converter.loader")

Fetcher = Callable[[str], Awaitable[bytes]]
EngineFactory = Callable[[Mapping[str, Path]], Awaitable[Any]]
ProgressListener = Callable[[float], None]

_EXE_SUFFIX = ".exe" if sys.platform == "win32" else ""


def _fetch_uncached(url: str) -> bytes:
    """Blocking GET that bypasses HTTP caches. Raises on network error or status >= 400."""
    req = Request(url, headers={
        "User-Agent": "DropConverter/1.0",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    })
    with urlopen(req, timeout=ENGINE_FETCH_TIMEOUT) as resp:
        if resp.status >= 400:
            raise OSError(f"{url} returned status {resp.status}")
        return resp.read()


async def fetch_uncached(url: str) -> bytes:
    return await asyncio.to_thread(_fetch_uncached, url)


def _is_usable(path: Path) -> bool:
    try:
        return path.is_file() and bool(path.stat().st_mode & 0o111 or sys.platform == "win32")
    except OSError:
        return False


class EngineLoader:
    """Owns the engine instance and its lifecycle."""

    def __init__(
        self,
        local_dir: Path = ENGINE_DIR,
        cache_dir: Path = ENGINE_CACHE_DIR,
        remote_base: str = ENGINE_REMOTE_BASE,
        assets: Sequence[str] = ENGINE_ASSETS,
        platform: str = ENGINE_PLATFORM,
        fetch: Optional[Fetcher] = None,
        factory: Optional[EngineFactory] = None,
        log_tail_lines: int = LOG_TAIL_LINES,
    ):
        self.local_dir = Path(local_dir)
        self.cache_dir = Path(cache_dir)
        self.remote_base = remote_base.rstrip("/")
        self.assets = tuple(assets)
        self.platform = platform
        self._fetch = fetch or fetch_uncached
        self._factory = factory or FFmpegEngine.create
        self._engine: Any = None
        self._pending: Optional[asyncio.Future] = None
        self._progress_listener: Optional[ProgressListener] = None
        self.log_tail: deque[str] = deque(maxlen=log_tail_lines)
        self.source: Optional[str] = None  # "local" | "remote" once ready

    def current_state(self) -> EngineState:
        if self._engine is not None:
            return EngineState.READY
        if self._pending is not None:
            return EngineState.LOADING
        return EngineState.UNLOADED

    async def ensure_ready(self) -> Any:
        if self._engine is not None:
            return self._engine
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        # shield: one caller being cancelled must not cancel the shared load
        return await asyncio.shield(self._pending)

    def close(self) -> None:
        """Release the engine's scratch space and return to unloaded."""
        engine, self._engine = self._engine, None
        self.source = None
        terminate = getattr(engine, "terminate", None)
        if terminate is not None:
            terminate()
            logger.info("Engine terminated")

    def set_progress_listener(self, listener: Optional[ProgressListener]) -> None:
        """Route the engine's 0..1 progress to listener (None to mute)."""
        self._progress_listener = listener

    def local_handles(self) -> dict[str, Path]:
        return {name: self.local_dir / f"{name}{_EXE_SUFFIX}" for name in self.assets}

    def remote_url(self, asset: str) -> str:
        return f"{self.remote_base}/{asset}-{self.platform}"

    async def _load(self) -> Any:
        try:
            engine = await self._run_protocol()
        except BaseException:
            self._pending = None
            raise
        engine.on("log", self.log_tail.append)
        engine.on("progress", self._forward_progress)
        self._engine = engine
        self._pending = None
        return engine

    async def _run_protocol(self) -> Any:
        problems: list[str] = []

        handles = self.local_handles()
        missing = [name for name, path in handles.items() if not _is_usable(path)]
        if not missing:
            try:
                engine = await self._factory(handles)
                self.source = "local"
                logger.info("Engine initialized from local assets in %s", self.local_dir)
                return engine
            except Exception as e:
                logger.warning("Local engine assets present but failed to initialize: %s", e)
                problems.append(f"local init failed: {e}")
        else:
            logger.info("Local engine assets missing (%s); using remote build", ", ".join(missing))
            problems.extend(f"local {name} missing at {handles[name]}" for name in missing)

        try:
            handles = await self._materialize_remote()
        except EngineLoadFailed as e:
            problems.extend(e.missing)
            raise EngineLoadFailed(_describe(problems), missing=problems) from e
        try:
            engine = await self._factory(handles)
        except Exception as e:
            problems.append(f"remote init failed: {e}")
            raise EngineLoadFailed(_describe(problems), missing=problems) from e
        self.source = "remote"
        logger.info("Engine initialized from remote assets cached in %s", self.cache_dir)
        return engine

    async def _materialize_remote(self) -> dict[str, Path]:
        unreachable: list[str] = []
        payloads: dict[str, bytes] = {}
        for name in self.assets:
            url = self.remote_url(name)
            try:
                data = await self._fetch(url)
            except Exception as e:
                logger.warning("Engine asset unreachable: %s (%s)", url, e)
                unreachable.append(f"remote {name} unreachable at {url}: {e}")
                continue
            if not data:
                unreachable.append(f"remote {name} empty at {url}")
                continue
            payloads[name] = data
        if unreachable:
            raise EngineLoadFailed("; ".join(unreachable), missing=unreachable)

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        handles: dict[str, Path] = {}
        for name, data in payloads.items():
            dest = self.cache_dir / f"{name}{_EXE_SUFFIX}"
            await asyncio.to_thread(dest.write_bytes, data)
            dest.chmod(dest.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            handles[name] = dest
        return handles

    def _forward_progress(self, fraction: float) -> None:
        if self._progress_listener is not None:
            self._progress_listener(fraction)


def _describe(problems: list[str]) -> str:
    return "Transcoding engine could not be loaded: " + "; ".join(problems)
