import json

import numpy as np
import pytest

from scrollshot import emit
from scrollshot.config import Config
from scrollshot.output import (
    OutputOptions,
    OutputResult,
    PixbufFileWriter,
    encode_image,
    publish,
    resolve_output_path,
)


@pytest.fixture
def gdk_pixbuf():
    gi = pytest.importorskip("gi")
    try:
        gi.require_version("GdkPixbuf", "2.0")
        from gi.repository import GdkPixbuf
    except (ImportError, ValueError) as e:
        pytest.skip(f"GdkPixbuf unavailable: {e}")
    return GdkPixbuf


def rgba(width=8, height=6):
    pixels = np.random.default_rng(1).integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    pixels[:, :, 3] = 255
    return pixels


class TestOutputOptions:

    def test_silent_disables_clipboard(self):
        assert OutputOptions(silent=True).clipboard is False


class TestResolveOutputPath:

    def test_custom_path(self, tmp_path):
        options = OutputOptions(output_path=tmp_path / "x.png")
        assert resolve_output_path(options, Config()) == tmp_path / "x.png"

    def test_output_dir(self, tmp_path):
        options = OutputOptions(output_format="webp")
        path = resolve_output_path(options, Config(output_dir=tmp_path))

        assert path.parent == tmp_path
        assert path.name.startswith("scrollshot_")
        assert path.suffix == ".webp"

    def test_silent_dir(self, tmp_path):
        options = OutputOptions(silent=True)
        path = resolve_output_path(options, Config(silent_output_dir=tmp_path))
        assert path.parent == tmp_path


class TestPublish:

    def test_json_output_and_event(self, tmp_path, capsys):
        result = OutputResult(
            path=tmp_path / "shot.png", width=10, height=40, frames=3, timestamp="t",
        )
        events = []
        emit.add_handler(events.append)
        try:
            publish(result, OutputOptions(json_output=True), Config(hooks_dir=None))
        finally:
            emit.remove_handler(events.append)

        out = json.loads(capsys.readouterr().out)
        assert out == {
            "path": str(tmp_path / "shot.png"),
            "width": 10,
            "height": 40,
            "frames": 3,
            "timestamp": "t",
        }
        artifact = [e for e in events if e["event_type"] == "artifact.created"][0]
        assert artifact["data"]["metadata"]["frames"] == 3

    def test_stdout_output(self, tmp_path, capsys):
        result = OutputResult.now(tmp_path / "shot.png", 10, 40, 3)
        publish(result, OutputOptions(stdout=True), Config(hooks_dir=None))

        assert capsys.readouterr().out.strip() == str(tmp_path / "shot.png")


class TestPixbufEncoding:

    def test_encode_png(self, gdk_pixbuf):
        data = encode_image(rgba().tobytes(), 8, 6, "png")
        assert data.startswith(b"\x89PNG")

    def test_write_and_read_back(self, gdk_pixbuf, tmp_path):
        from scrollshot.capture import load_frame

        pixels = rgba()
        path = PixbufFileWriter().write_image_file(
            tmp_path / "nested" / "shot.png", pixels.tobytes(), 8, 6, "png", 90,
        )

        assert path == tmp_path / "nested" / "shot.png"
        np.testing.assert_array_equal(load_frame(path).pixels, pixels)

