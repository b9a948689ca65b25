import pytest
import shlex
import subprocess
from pathlib import Path
from unittest.mock import patch, MagicMock
from vbt.config.models import EncodingConfig
from vbt.domain.models import OutputFormat, TranscodeError, ThumbnailError
from vbt.infrastructure.ffmpeg import FFmpegAdapter, format_command, tmp_output_path


def test_ffmpeg_mp4_command():
    adapter = FFmpegAdapter(audio_codec="libfdk_aac")
    cmd = adapter.build_command(Path("in/clip.mov"), Path("out/clip.mp4"), OutputFormat.MP4)

    assert cmd[:4] == ["ffmpeg", "-y", "-i", "in/clip.mov"]
    assert cmd[4:-3] == [
        "-acodec", "libfdk_aac",
        "-b:a", "192k",
        "-vcodec", "libx264",
        "-vf", "scale=960:-1",
        "-pix_fmt", "yuv420p",
        "-profile:v", "baseline",
        "-level", "3",
        "-strict", "-2",
    ]
    assert cmd[-3:] == ["-f", "mp4", "out/clip.mp4.tmp"]


def test_ffmpeg_webm_command():
    adapter = FFmpegAdapter(ffmpeg_bin="/usr/local/bin/ffmpeg")
    cmd = adapter.build_command(Path("clip.mov"), Path("clip.webm"), OutputFormat.WEBM)

    assert cmd[0] == "/usr/local/bin/ffmpeg"
    assert "libvpx-vp9" in cmd
    assert "libvorbis" in cmd
    assert cmd[cmd.index("-b:v") + 1] == "1M"
    assert cmd[-3:] == ["-f", "webm", "clip.webm.tmp"]


def test_ffmpeg_encoding_overrides():
    encoding = EncodingConfig(scale_width=640, audio_bitrate="128k", webm_video_bitrate="2M")
    adapter = FFmpegAdapter(encoding=encoding)

    mp4 = adapter.build_command(Path("a.mov"), Path("a.mp4"), OutputFormat.MP4)
    webm = adapter.build_command(Path("a.mov"), Path("a.webm"), OutputFormat.WEBM)

    assert mp4[mp4.index("-vf") + 1] == "scale=640:-1"
    assert mp4[mp4.index("-b:a") + 1] == "128k"
    assert webm[webm.index("-b:v") + 1] == "2M"


def test_format_command_quotes_special_characters():
    cmd = ["ffmpeg", "-i", "My Clip & \"Friends\".mov", "out's.mp4"]
    line = format_command(cmd)

    assert shlex.split(line) == cmd


def test_tmp_output_path():
    assert tmp_output_path(Path("/out/a b.mp4")) == Path("/out/a b.mp4.tmp")


def test_transcode_renames_tmp_on_success(tmp_path):
    output = tmp_path / "clip.mp4"

    def fake_run(cmd, **kwargs):
        Path(cmd[-1]).write_bytes(b"data")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    with patch("subprocess.run", side_effect=fake_run):
        FFmpegAdapter().transcode(tmp_path / "clip.mov", output, OutputFormat.MP4)

    assert output.read_bytes() == b"data"
    assert not tmp_output_path(output).exists()


def test_transcode_failure_cleans_tmp(tmp_path):
    output = tmp_path / "clip.webm"

    def fake_run(cmd, **kwargs):
        Path(cmd[-1]).write_bytes(b"partial")
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="x" * 5000 + "Conversion failed!")

    with patch("subprocess.run", side_effect=fake_run):
        with pytest.raises(TranscodeError) as excinfo:
            FFmpegAdapter().transcode(tmp_path / "clip.mov", output, OutputFormat.WEBM)

    assert "Conversion failed!" in str(excinfo.value)
    assert len(str(excinfo.value)) < 2200
    assert not output.exists()
    assert not tmp_output_path(output).exists()


def test_transcode_without_output_raises(tmp_path):
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.returncode = 0
        mock_run.return_value.stdout = ""
        with pytest.raises(TranscodeError, match="wrote no output"):
            FFmpegAdapter().transcode(tmp_path / "a.mov", tmp_path / "a.mp4", OutputFormat.MP4)


def test_transcode_timeout(tmp_path):
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="ffmpeg", timeout=1.5)):
        adapter = FFmpegAdapter(timeout=1.5)
        with pytest.raises(TranscodeError, match="timed out"):
            adapter.transcode(tmp_path / "a.mov", tmp_path / "a.mp4", OutputFormat.MP4)

    kwargs = {"capture_output": True, "text": True, "encoding": "utf-8", "errors": "replace", "timeout": 1.5}
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.returncode = 1
        mock_run.return_value.stderr = ""
        with pytest.raises(TranscodeError):
            adapter.transcode(tmp_path / "a.mov", tmp_path / "a.mp4", OutputFormat.MP4)
        assert mock_run.call_args.kwargs == kwargs


def test_transcode_debug_logs_command(tmp_path, caplog):
    def fake_run(cmd, **kwargs):
        Path(cmd[-1]).write_bytes(b"data")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    with patch("subprocess.run", side_effect=fake_run):
        with caplog.at_level("DEBUG", logger="vbt.infrastructure.ffmpeg"):
            FFmpegAdapter(debug=True).transcode(tmp_path / "a b.mov", tmp_path / "a b.mp4", OutputFormat.MP4)

    assert any("FFMPEG_CMD:" in r.message and "'" in r.message for r in caplog.records)


def test_extract_frames_command(tmp_path):
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        FFmpegAdapter().extract_frames(Path("clip.mp4"), tmp_path, count=50, duration_seconds=100.0)

        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-vf") + 1] == "fps=0.500000"
        assert cmd[cmd.index("-frames:v") + 1] == "50"
        assert cmd[-1] == str(tmp_path / "frame-%03d.png")


def test_extract_frames_failure_raises_thumbnail_error(tmp_path):
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="boom")
        with pytest.raises(ThumbnailError):
            FFmpegAdapter().extract_frames(Path("clip.mp4"), tmp_path, count=5, duration_seconds=10.0)


def test_transcode_tolerates_non_utf8_stderr(latin1_tool, tmp_path):
    output = tmp_path / "clip.mp4"
    adapter = FFmpegAdapter(ffmpeg_bin=latin1_tool("ffmpeg", write_output=True))

    adapter.transcode(tmp_path / "clip.mov", output, OutputFormat.MP4)

    assert output.read_bytes() == b"encoded"
    assert not tmp_output_path(output).exists()


def test_transcode_failure_keeps_non_utf8_stderr_readable(latin1_tool, tmp_path):
    adapter = FFmpegAdapter(ffmpeg_bin=latin1_tool("ffmpeg", exit_code=1))

    with pytest.raises(TranscodeError) as excinfo:
        adapter.transcode(tmp_path / "clip.mov", tmp_path / "clip.webm", OutputFormat.WEBM)

    assert "Caf\ufffd" in str(excinfo.value)
