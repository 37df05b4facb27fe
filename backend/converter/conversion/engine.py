"""ffmpeg-backed transcoding engine.

The engine owns a private scratch directory that acts as its virtual
filesystem: callers write named input buffers into it, execute an ffmpeg
argument list against those names, read the named output back and delete
both. Two event channels are exposed:

- ``log``: every stderr line ffmpeg prints
- ``progress``: completion fraction in [0, 1] for the running command
"""
import asyncio
import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Mapping, Optional

logger = logging.getLogger("converter.engine")

LogListener = Callable[[str], None]
ProgressListener = Callable[[float], None]


class FFmpegEngine:
    def __init__(self, ffmpeg: Path, ffprobe: Optional[Path] = None, workdir: Optional[Path] = None):
        self.ffmpeg = Path(ffmpeg)
        self.ffprobe = Path(ffprobe) if ffprobe else None
        self.workdir = Path(workdir) if workdir else Path(tempfile.mkdtemp(prefix="converter-vfs-"))
        self.workdir.mkdir(parents=True, exist_ok=True)
        self._log_listeners: list[LogListener] = []
        self._progress_listeners: list[ProgressListener] = []

    @classmethod
    async def create(cls, handles: Mapping[str, Path]) -> "FFmpegEngine":
        """Initialize against resolved asset handles and check the binary runs."""
        engine = cls(handles["ffmpeg"], handles.get("ffprobe"))
        try:
            proc = await asyncio.create_subprocess_exec(
                str(engine.ffmpeg), "-hide_banner", "-version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            out, err = await proc.communicate()
            if proc.returncode != 0:
                raise RuntimeError(
                    f"ffmpeg at {engine.ffmpeg} failed to start: "
                    f"{(err or out).decode('utf-8', errors='ignore').strip()}"
                )
        except BaseException:
            engine.terminate()
            raise
        version = out.decode("utf-8", errors="ignore").splitlines()[:1]
        logger.info("Engine ready: %s", version[0] if version else engine.ffmpeg)
        return engine

    def on(self, event: str, listener: Callable) -> None:
        if event == "log":
            self._log_listeners.append(listener)
        elif event == "progress":
            self._progress_listeners.append(listener)
        else:
            raise ValueError(f"Unknown engine event: {event}")

    # Virtual filesystem

    def _vfs_path(self, name: str) -> Path:
        path = (self.workdir / name).resolve()
        if path.parent != self.workdir.resolve():
            raise ValueError(f"Invalid virtual file name: {name}")
        return path

    async def write_file(self, name: str, data: bytes) -> None:
        await asyncio.to_thread(self._vfs_path(name).write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        """Raises FileNotFoundError when the command produced no such file."""
        return await asyncio.to_thread(self._vfs_path(name).read_bytes)

    async def delete_file(self, name: str) -> None:
        self._vfs_path(name).unlink()

    def terminate(self) -> None:
        shutil.rmtree(self.workdir, ignore_errors=True)

    # Execution

    async def exec(self, args: list[str]) -> int:
        """Run ffmpeg with args inside the virtual filesystem. Returns the exit code."""
        duration = await self._probe_duration(_input_of(args))
        cmd = [str(self.ffmpeg), "-hide_banner", "-nostdin", "-y", "-progress", "pipe:1", "-nostats", *args]
        logger.debug("exec: %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.workdir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._emit_log(f"failed to start ffmpeg: {e}")
            return -1

        async def read_stdout():
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                fraction = parse_progress_line(line.decode("utf-8", errors="ignore").strip(), duration)
                if fraction is not None:
                    self._emit_progress(fraction)

        async def read_stderr():
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="ignore").rstrip()
                if text:
                    self._emit_log(text)

        await asyncio.gather(read_stdout(), read_stderr())
        code = await process.wait()
        if code == 0:
            self._emit_progress(1.0)
        return code

    async def _probe_duration(self, name: Optional[str]) -> float:
        if not name or self.ffprobe is None:
            return 0.0
        proc = await asyncio.create_subprocess_exec(
            str(self.ffprobe), "-v", "quiet", "-print_format", "json", "-show_format", name,
            cwd=str(self.workdir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        out, _ = await proc.communicate()
        if proc.returncode != 0:
            return 0.0
        return parse_probe_duration(out.decode("utf-8", errors="ignore"))

    def _emit_log(self, line: str) -> None:
        logger.debug("ffmpeg: %s", line)
        for listener in self._log_listeners:
            listener(line)

    def _emit_progress(self, fraction: float) -> None:
        for listener in self._progress_listeners:
            try:
                listener(fraction)
            except Exception as e:
                logger.warning("Progress listener error: %s", e)


def _input_of(args: list[str]) -> Optional[str]:
    for i, arg in enumerate(args[:-1]):
        if arg == "-i":
            return args[i + 1]
    return None


def parse_probe_duration(raw: str) -> float:
    """Duration in seconds from ffprobe -show_format JSON, 0.0 if unknown."""
    try:
        return float(json.loads(raw).get("format", {}).get("duration", 0.0))
    except (ValueError, TypeError, AttributeError):
        return 0.0


def parse_progress_line(line: str, duration: float) -> Optional[float]:
    """Fraction in [0, 1] from an ``out_time=HH:MM:SS.ffffff`` progress line."""
    if not line.startswith("out_time=") or duration <= 0:
        return None
    parts = line.split("=", 1)[1].split(":")
    try:
        seconds = float(parts[0]) * 3600 + float(parts[1]) * 60 + float(parts[2])
    except (ValueError, IndexError):
        return None
    return max(0.0, min(1.0, seconds / duration))
