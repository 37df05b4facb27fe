"""Tests for planning and running codec candidates on the engine."""
from collections import deque

import pytest

from converter.conversion.exceptions import (
    EngineExecutionFailed,
    NoAudioTrack,
    UnsupportedConversion,
)
from converter.conversion.executor import TranscodeExecutor, build_plan
from converter.conversion.models import Kind
from fakes import FakeEngine


def _executor(engine: FakeEngine) -> TranscodeExecutor:
    tail = deque(maxlen=30)
    engine.on("log", tail.append)
    return TranscodeExecutor(tail)


class TestBuildPlan:
    @pytest.mark.parametrize("ext", ["eps", "ai"])
    def test_rasterizer_inputs_rejected(self, ext):
        with pytest.raises(UnsupportedConversion):
            build_plan(Kind.IMAGE, ext, "png")

    def test_vector_output_rejected(self):
        with pytest.raises(UnsupportedConversion):
            build_plan(Kind.IMAGE, "png", "svg")

    def test_icon_forces_square_resize(self):
        plan = build_plan(Kind.IMAGE, "png", "ico")
        (candidate,) = plan.candidates
        assert candidate.args == ("-vf", "scale=256:256", "-frames:v", "1")

    @pytest.mark.parametrize("out", ["png", "jpg", "bmp", "tiff", "gif", "avif", "webp"])
    def test_image_commands_write_one_frame(self, out):
        cmd = build_plan(Kind.IMAGE, "gif", out).candidates[0].build_command("input.gif")
        assert cmd[cmd.index("-frames:v") + 1] == "1"
        assert cmd[-1] == f"output.{out}"

    def test_image_has_single_command(self):
        plan = build_plan(Kind.IMAGE, "heic", "jpg")
        assert len(plan.candidates) == 1
        assert plan.input_name == "input.heic"

    def test_mp3_candidate_order(self):
        plan = build_plan(Kind.VIDEO, "mov", "mp3")
        assert [c.format_code for c in plan.candidates] == ["mp3", "m4a", "ogg"]
        assert plan.extracts_audio

    def test_audio_extraction_strips_other_streams(self):
        cmd = build_plan(Kind.VIDEO, "mov", "wav").candidates[0].build_command("input.mov")
        assert cmd[:2] == ["-i", "input.mov"]
        for flag in ("-vn", "-sn", "-dn"):
            assert flag in cmd
        assert cmd[cmd.index("-map") + 1] == "0:a:0?"
        assert cmd[-1] == "output.wav"

    def test_video_transcode_is_not_audio_extraction(self):
        assert not build_plan(Kind.VIDEO, "mov", "mp4").extracts_audio

    @pytest.mark.parametrize(
        "kind,out",
        [(Kind.AUDIO, "mp4"), (Kind.DOCUMENT, "txt"), (Kind.UNKNOWN, "mp3"), (Kind.IMAGE, "mp3")],
    )
    def test_no_candidates(self, kind, out):
        with pytest.raises(UnsupportedConversion):
            build_plan(kind, "x", out)


class TestExecute:
    @pytest.mark.asyncio
    async def test_primary_candidate_succeeds(self):
        engine = FakeEngine()
        result = await _executor(engine).execute(engine, b"movie", "mov", Kind.VIDEO, "mp3")

        assert result.actual_format_code == "mp3"
        assert result.result_media_type == "audio/mpeg"
        assert result.output_bytes == b"converted:mp3"
        assert result.diagnostic_note is None
        assert len(engine.commands) == 1
        assert "libmp3lame" in engine.commands[0]

    @pytest.mark.asyncio
    async def test_fallback_candidate_changes_format(self):
        engine = FakeEngine({"mp3": [(1, b"", ["Unknown encoder 'libmp3lame'"])]})
        result = await _executor(engine).execute(engine, b"movie", "mov", Kind.VIDEO, "mp3")

        assert result.actual_format_code == "m4a"
        assert result.result_media_type == "audio/mp4"
        assert "m4a" in result.diagnostic_note
        assert len(engine.commands) == 2

    @pytest.mark.asyncio
    async def test_empty_readback_is_no_audio_track(self):
        engine = FakeEngine({"mp3": [(0, b"", [])]})
        with pytest.raises(NoAudioTrack):
            await _executor(engine).execute(engine, b"silent", "mov", Kind.VIDEO, "mp3")
        assert len(engine.commands) == 1

    @pytest.mark.asyncio
    async def test_missing_stream_error_is_no_audio_track(self):
        engine = FakeEngine({"wav": [(1, b"", ["Output file #0 does not contain any stream"])]})
        with pytest.raises(NoAudioTrack) as excinfo:
            await _executor(engine).execute(engine, b"silent", "mp4", Kind.VIDEO, "wav")
        assert excinfo.value.log_tail == ["Output file #0 does not contain any stream"]

    @pytest.mark.asyncio
    async def test_all_candidates_fail_with_bounded_log_tail(self):
        lines = [f"error line {i}" for i in range(50)]
        engine = FakeEngine({
            "mp3": [(1, b"", lines)],
            "m4a": [(1, b"", [])],
            "ogg": [(1, b"", [])],
        })
        with pytest.raises(EngineExecutionFailed) as excinfo:
            await _executor(engine).execute(engine, b"movie", "mov", Kind.VIDEO, "mp3")

        assert len(engine.commands) == 3
        assert excinfo.value.log_tail == lines[-30:]

    @pytest.mark.asyncio
    async def test_stale_output_from_failed_candidate_is_not_used(self):
        engine = FakeEngine({"mp4": [(1, b"partial", []), (0, b"", [])]})
        with pytest.raises(EngineExecutionFailed):
            await _executor(engine).execute(engine, b"movie", "mov", Kind.VIDEO, "mp4")

    @pytest.mark.asyncio
    async def test_engine_exception_moves_to_next_candidate(self):
        engine = FakeEngine()
        calls = []
        original = engine.exec

        async def flaky(args):
            calls.append(args)
            if len(calls) == 1:
                raise RuntimeError("worker crashed")
            return await original(args)

        engine.exec = flaky
        result = await _executor(engine).execute(engine, b"movie", "mkv", Kind.VIDEO, "mp4")
        assert result.actual_format_code == "mp4"
        assert result.diagnostic_note == "Used fallback encoder #2"

    @pytest.mark.asyncio
    async def test_unsupported_request_never_touches_engine(self):
        engine = FakeEngine()
        with pytest.raises(UnsupportedConversion):
            await _executor(engine).execute(engine, b"%!PS", "eps", Kind.IMAGE, "png")
        assert engine.commands == []
        assert engine.files == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "outcomes",
        [{}, {"mp3": [(0, b"", [])]}, {"mp3": [(1, b"x", [])], "m4a": [(1, b"", [])], "ogg": [(1, b"", [])]}],
    )
    async def test_virtual_files_cleaned_up(self, outcomes):
        engine = FakeEngine(outcomes)
        try:
            await _executor(engine).execute(engine, b"movie", "mov", Kind.VIDEO, "mp3")
        except (NoAudioTrack, EngineExecutionFailed):
            pass
        assert engine.files == {}
