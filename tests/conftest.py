import json
import os
import pytest
import subprocess
import yaml
from pathlib import Path
from PIL import Image
from vbt.config.models import AppConfig
from vbt.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "base_path": str(tmp_path / "input"),
            "output_path": str(tmp_path / "output"),
            "extensions": [".mov", ".mp4"],
            "concurrency": 1,
            "audio_codec": "aac",
            "error_report": str(tmp_path / "errors.json"),
            "debug": False,
        },
        stages={
            "encode": True,
            "webm": True,
            "mp4": True,
            "thumbnail": True,
            "file_info": False,
        },
        thumbnail={
            "frame_count": 5,
        },
        publish={
            "fake_upload": True,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vbt.yaml"

    content = {
        'general': {
            'base_path': str(tmp_path / "input"),
            'output_path': str(tmp_path / "output"),
            'extensions': ['mov', 'MP4'],
            'concurrency': 2,
            'audio_codec': 'libfdk_aac',
            'debug': False,
        },
        'stages': {
            'thumbnail': False,
        },
        'publish': {
            'fake_upload': True,
            'bucket': 'media',
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(tmp_path):
    """Creates a test input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir

@pytest.fixture
def media_tree(test_input_dir):
    """Creates a nested tree with allowed, disallowed and hidden entries."""
    allowed = [
        test_input_dir / "clip.mov",
        test_input_dir / "Season 1" / "Episode 01.MP4",
        test_input_dir / "Season 1" / "extras" / "deep" / "bonus.mov",
    ]
    ignored = [
        test_input_dir / "notes.txt",
        test_input_dir / ".hidden.mov",
        test_input_dir / ".cache" / "cached.mov",
        test_input_dir / "Season 1" / "cover.jpg",
    ]
    for f in allowed + ignored:
        f.parent.mkdir(parents=True, exist_ok=True)
        f.write_bytes(b"dummy media content " * 10)
    return allowed, ignored

# ============================================================================
# Fake external tools
# ============================================================================

def write_png(path: Path, size=(64, 36), color=(200, 30, 30)):
    Image.new("RGB", size, color=color).save(path, format="PNG")


class FakeTools:
    """Stands in for ffmpeg/ffprobe behind a patched subprocess.run.

    Encodes write a small file to the requested output; frame sampling writes
    PNG frames plus one junk file; probes report a fixed duration.
    """

    def __init__(self, duration="00:00:10.00", fail_inputs=(), junk_frame=True):
        self.duration = duration
        self.fail_inputs = set(fail_inputs)
        self.junk_frame = junk_frame
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        binary = Path(cmd[0]).name
        if binary == "ffprobe":
            return self._probe(cmd)
        return self._encode(cmd)

    def _probe(self, cmd):
        if "-print_format" in cmd:
            h, m, s = self.duration.split(":")
            seconds = int(h) * 3600 + int(m) * 60 + float(s)
            stdout = json.dumps({"format": {"duration": f"{seconds:.6f}"}, "streams": []})
            return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")
        stderr = (
            "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'x':\n"
            f"  Duration: {self.duration}, start: 0.000000, bitrate: 1205 kb/s\n"
            "    Stream #0:0: Video: h264\n"
        )
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr=stderr)

    def _encode(self, cmd):
        input_path = Path(cmd[cmd.index("-i") + 1])
        if input_path.name in self.fail_inputs:
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="Invalid data found when processing input")
        target = Path(cmd[-1])
        if "-frames:v" in cmd:
            count = int(cmd[cmd.index("-frames:v") + 1])
            for i in range(1, count + 1):
                write_png(target.parent / (target.name % i), color=(i * 20 % 255, 60, 90))
            if self.junk_frame:
                (target.parent / "partial.png").write_bytes(b"\x00\x01truncated")
        else:
            target.write_bytes(b"encoded " + input_path.name.encode())
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest.fixture
def fake_tools():
    return FakeTools()


LATIN1_BANNER = r"  Duration: 00:00:10.00, start: 0.000000, bitrate: 1205 kb/s\n    title           : Caf\351\n"


@pytest.fixture
def latin1_tool(tmp_path):
    """Builds a shell script that prints Latin-1 bytes on stderr like a real ffmpeg/ffprobe.

    With ``write_output`` the script writes to its last argument (the encoder's
    output path); ``exit_code`` sets its status.
    """
    if os.name != "posix":
        pytest.skip("shell scripts need a POSIX shell")

    def make(name, write_output=False, exit_code=0):
        script = tmp_path / "bin" / name
        script.parent.mkdir(exist_ok=True)
        lines = ["#!/bin/sh", "for last; do :; done"]
        if write_output:
            lines.append('printf "encoded" > "$last"')
        lines.append(f"printf '{LATIN1_BANNER}' >&2")
        lines.append(f"exit {exit_code}")
        script.write_text("\n".join(lines) + "\n")
        script.chmod(0o755)
        return str(script)

    return make


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
