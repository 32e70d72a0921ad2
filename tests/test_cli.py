import json
import threading

import pytest

from scrollshot import emit
from scrollshot.cli import (
    MAX_CAPTURE_RETRIES,
    build_output_options,
    create_argument_parser,
    handle_scroll_capture,
    main,
    run_capture_loop,
)
from scrollshot.config import Config
from scrollshot.errors import CaptureFailed
from scrollshot.session import ScrollCaptureService, SessionState

from conftest import FakeClipboardWriter, FakeFileWriter, FakeProvider, frame_at


def no_sleep(_seconds):
    pass


def make_service(frames, **kwargs):
    kwargs.setdefault("file_writer", FakeFileWriter())
    kwargs.setdefault("clipboard_writer", FakeClipboardWriter())
    return ScrollCaptureService(provider=FakeProvider(frames), **kwargs)


class TestRunCaptureLoop:

    def test_stops_when_scrolling_ends(self, page, region):
        frames = [frame_at(page, top, 100) for top in (0, 50, 120, 120, 120, 120)]
        service = make_service(frames)
        service.init(region)

        stitched = run_capture_loop(service, 50, 0, end_after_duplicates=2, sleep=no_sleep)

        assert stitched == 5
        assert service.get_size() == (64, 220)

    def test_max_frames(self, page, region):
        frames = [frame_at(page, top, 100) for top in (0, 10, 20, 30)]
        service = make_service(frames)
        service.init(region)

        assert run_capture_loop(service, 2, 0, 3, sleep=no_sleep) == 2
        assert service.get_size() == (64, 110)

    def test_stop_request(self, page, region):
        service = make_service([frame_at(page, 0, 100)])
        service.init(region)
        stop = threading.Event()
        stop.set()

        assert run_capture_loop(service, 10, 0, 3, should_stop=stop.is_set, sleep=no_sleep) == 0

    def test_retries_capture_failures(self, page, region, capture_error):
        frames = [capture_error, frame_at(page, 0, 100), capture_error, frame_at(page, 40, 100)]
        service = make_service(frames)
        service.init(region)

        assert run_capture_loop(service, 2, 0, 3, sleep=no_sleep) == 2
        assert service.get_size() == (64, 140)

    def test_gives_up_after_repeated_failures(self, region, capture_error):
        service = make_service([capture_error] * MAX_CAPTURE_RETRIES)
        service.init(region)

        with pytest.raises(CaptureFailed):
            run_capture_loop(service, 5, 0, 3, sleep=no_sleep)


class TestHandleScrollCapture:

    def make_config(self, tmp_path, **kwargs):
        kwargs.setdefault("output_dir", tmp_path)
        kwargs.setdefault("hooks_dir", None)
        kwargs.setdefault("capture_interval_ms", 0)
        kwargs.setdefault("end_after_duplicates", 2)
        return Config(**kwargs)

    def test_full_run(self, page, tmp_path, capsys):
        config = self.make_config(tmp_path)
        args = create_argument_parser().parse_args(
            ["--region", "0,0,64,100", "--json", "--format", "jpg", "--quality", "70"]
        )
        options = build_output_options(args, config)
        writer = FakeFileWriter()
        clipboard = FakeClipboardWriter()
        frames = [frame_at(page, top, 100) for top in (0, 60, 130, 130, 130)]
        service = make_service(frames, file_writer=writer, clipboard_writer=clipboard)
        events = []
        emit.add_handler(events.append)
        try:
            code = handle_scroll_capture(args, config, options, service=service)
        finally:
            emit.remove_handler(events.append)

        assert code == 0
        path, data, width, height, image_format, quality = writer.calls[0]
        assert path.parent == tmp_path
        assert (width, height, image_format, quality) == (64, 230, "jpg", 70)
        assert data == page[:230].tobytes()
        assert clipboard.calls[0][1:] == (64, 230)
        assert service.state is SessionState.IDLE

        out = json.loads(capsys.readouterr().out)
        assert (out["width"], out["height"], out["frames"]) == (64, 230, 3)

        types = [e["event_type"] for e in events]
        assert types[0] == "operation.started"
        assert "artifact.created" in types
        assert types[-2:] == ["operation.completed", "session.cleared"]

    def test_no_clipboard(self, page, tmp_path):
        config = self.make_config(tmp_path, enable_clipboard=False)
        args = create_argument_parser().parse_args(["--region", "0,0,64,100", "--stdout"])
        clipboard = FakeClipboardWriter()
        service = make_service(
            [frame_at(page, 0, 100), frame_at(page, 0, 100), frame_at(page, 0, 100)],
            clipboard_writer=clipboard,
        )

        code = handle_scroll_capture(args, config, build_output_options(args, config), service)

        assert code == 0
        assert clipboard.calls == []

    def test_capture_error_reports_failure(self, tmp_path, capture_error):
        config = self.make_config(tmp_path)
        args = create_argument_parser().parse_args(["--region", "0,0,64,100"])
        writer = FakeFileWriter()
        service = make_service([capture_error] * MAX_CAPTURE_RETRIES, file_writer=writer)
        events = []
        emit.add_handler(events.append)
        try:
            code = handle_scroll_capture(args, config, build_output_options(args, config), service)
        finally:
            emit.remove_handler(events.append)

        assert code == 1
        assert writer.calls == []
        assert service.state is SessionState.IDLE
        errors = [e["data"] for e in events if e["event_type"] == "error.handled"]
        assert errors[0]["error_type"] == "CaptureFailed"

    def test_capture_failure_keeps_stitched_rows(self, page, tmp_path, capture_error):
        config = self.make_config(tmp_path)
        args = create_argument_parser().parse_args(["--region", "0,0,64,100"])
        writer = FakeFileWriter()
        frames = [frame_at(page, 0, 100), frame_at(page, 40, 100)]
        frames += [capture_error] * MAX_CAPTURE_RETRIES
        service = make_service(frames, file_writer=writer)
        events = []
        emit.add_handler(events.append)
        try:
            code = handle_scroll_capture(args, config, build_output_options(args, config), service)
        finally:
            emit.remove_handler(events.append)

        assert code == 1
        assert len(writer.calls) == 1
        _path, data, width, height, _fmt, _quality = writer.calls[0]
        assert (width, height) == (64, 140)
        assert data == page[:140].tobytes()
        assert service.state is SessionState.IDLE

        completed = [e["data"] for e in events if e["event_type"] == "operation.completed"]
        assert completed[0]["success"] is False
        assert completed[0]["metadata"]["height"] == 140
        assert "artifact.created" in [e["event_type"] for e in events]

    def test_invalid_stitch_settings(self, tmp_path):
        config = self.make_config(tmp_path, max_search_rows=-1)
        args = create_argument_parser().parse_args(["--region", "0,0,64,100"])

        assert handle_scroll_capture(args, config, build_output_options(args, config)) == 1

    def test_format_choices(self):
        with pytest.raises(SystemExit):
            create_argument_parser().parse_args(["--region", "0,0,64,100", "--format", "gif"])

    def test_invalid_region(self, tmp_path):
        config = self.make_config(tmp_path)
        args = create_argument_parser().parse_args(["--region", "0,0,64"])

        assert handle_scroll_capture(args, config, build_output_options(args, config)) == 1


class TestMain:

    @pytest.fixture(autouse=True)
    def isolated_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SCROLLSHOT_CONFIG", str(tmp_path / "config.yaml"))
        monkeypatch.setenv("SCROLLSHOT_LOCK_FILE", str(tmp_path / "scrollshot.lock"))

    def test_print_defaults(self, capsys):
        assert main(["--print-defaults"]) == 0
        assert json.loads(capsys.readouterr().out)["default_format"] == "png"

    def test_print_event_catalog(self, capsys):
        assert main(["--print-event-catalog"]) == 0
        catalog = json.loads(capsys.readouterr().out)["catalog"]
        assert "frame.stitched" in [entry["event_type"] for entry in catalog]

    def test_validate_config(self, tmp_path, capsys):
        (tmp_path / "config.yaml").write_text("max_frames: 0\n")

        assert main(["--validate-config"]) == 1
        assert "max_frames must be >= 1" in capsys.readouterr().err

    def test_stop_without_running_capture(self):
        assert main(["--stop", "--silent"]) == 1

    def test_region_required(self):
        with pytest.raises(SystemExit):
            main(["--silent"])
