"""Command-line interface for scrollshot.

Entry point flow:
1. Parse arguments (introspection flags exit early)
2. --stop: signal the running capture and exit
3. Acquire the instance lock, then capture and stitch until the content
   stops scrolling, the frame limit is hit, or a stop signal arrives
4. Save to file (and clipboard), publish, clear the session
"""

import argparse
import atexit
import json
import logging
import signal
import sys
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from . import __version__
from .config import (
    Config,
    config_defaults,
    config_schema,
    config_to_dict,
    load_config,
    validate_config_file,
)
from .emit import EVENT_CATALOG, configure, emit
from .errors import CaptureFailed, ScrollCaptureError
from .frame import Region
from .hooks import HOOK_CONTRACT
from .instance import STOP_SIGNAL, InstanceManager
from .output import SUPPORTED_FORMATS, OutputOptions, OutputResult, publish, resolve_output_path
from .session import ScrollCaptureService

log = logging.getLogger(__name__)

OPERATION_TYPE = "screenshot.scroll_capture"
MAX_CAPTURE_RETRIES = 3


def _start_operation(region: Region) -> str:
    operation_id = str(uuid.uuid4())
    emit("operation.started", {
        "operation_type": OPERATION_TYPE,
        "operation_id": operation_id,
        "region": str(region),
    })
    return operation_id


def _complete_operation(
    operation_id: str,
    region: Region,
    result: Optional[OutputResult] = None,
    error_message: Optional[str] = None,
) -> None:
    payload = {
        "operation_type": OPERATION_TYPE,
        "operation_id": operation_id,
        "region": str(region),
    }

    if result is None or error_message:
        payload["success"] = False
        payload["error_message"] = error_message or "operation failed"
    if result is not None:
        payload["outputs"] = [{
            "file_path": str(result.path),
            "file_type": "scroll_screenshot",
        }]
        payload["metadata"] = {
            "width": result.width,
            "height": result.height,
            "frames": result.frames,
            "timestamp": result.timestamp,
        }

    emit("operation.completed", payload)


def create_argument_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI usage."""
    parser = argparse.ArgumentParser(
        prog="scrollshot",
        description="Scrolling screenshot capture and stitching",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --region 100,100,800,600             # Capture while you scroll
  %(prog)s --region 100,100,800,600 --json      # JSON metadata on stdout
  %(prog)s --region 0,0,1200,900 --max-frames 20 --interval 250
  %(prog)s --stop                               # Finish the running capture
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"scrollshot {__version__}",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to config file (default: platform config dir)",
    )

    # Introspection
    parser.add_argument("--print-defaults", action="store_true",
                        help="Print default configuration as JSON and exit")
    parser.add_argument("--print-config-schema", action="store_true",
                        help="Print configuration schema as JSON and exit")
    parser.add_argument("--validate-config", action="store_true",
                        help="Validate configuration file and exit")
    parser.add_argument("--print-hook-contract", action="store_true",
                        help="Print hook contract as JSON and exit")
    parser.add_argument("--print-resolved", action="store_true",
                        help="Print resolved configuration as JSON and exit")
    parser.add_argument("--print-event-catalog", action="store_true",
                        help="Print event catalog as JSON and exit")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--region",
        metavar="X,Y,W,H",
        help="Region to capture while scrolling (e.g., 100,100,800,600)",
    )
    mode.add_argument(
        "--stop",
        action="store_true",
        help="Ask the running capture to finish and save",
    )

    # Capture loop
    parser.add_argument("--interval", type=int, metavar="MS",
                        help="Delay between captures in milliseconds")
    parser.add_argument("--max-frames", type=int, metavar="N",
                        help="Stop after N stitched frames")
    parser.add_argument("--delay", type=int, metavar="MS",
                        help="Delay before the first capture in milliseconds")

    # Output options
    parser.add_argument(
        "--output", "-o",
        metavar="PATH",
        help="Custom output path (default: ~/Pictures/screenshots/scrollshot_<timestamp>.png)",
    )
    parser.add_argument(
        "--format", "-f",
        choices=SUPPORTED_FORMATS,
        help="Output format (default: png)",
    )
    parser.add_argument(
        "--quality", "-q",
        type=int,
        metavar="1-100",
        help="Quality for lossy formats (default: 90)",
    )
    parser.add_argument("--no-clipboard", action="store_true",
                        help="Do not copy to clipboard")
    parser.add_argument("--silent", action="store_true",
                        help="Silent mode: no clipboard, no events, JSON output")

    # Output modes
    parser.add_argument("--stdout", action="store_true",
                        help="Print output path to stdout")
    parser.add_argument("--json", action="store_true",
                        help="Output JSON metadata to stdout")

    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")

    return parser


def build_output_options(args: argparse.Namespace, config: Config) -> OutputOptions:
    """Build OutputOptions from parsed arguments and config defaults."""
    return OutputOptions(
        output_path=Path(args.output).expanduser() if args.output else None,
        output_format=args.format or config.default_format,
        quality=args.quality if args.quality is not None else config.default_quality,
        clipboard=config.enable_clipboard and not (args.no_clipboard or args.silent),
        stdout=args.stdout,
        json_output=args.json or args.silent,
        silent=args.silent,
    )


def _emit_json(payload) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _handle_introspection(args: argparse.Namespace) -> Optional[int]:
    config_path = Path(args.config).expanduser() if args.config else None

    if args.print_defaults:
        _emit_json(config_defaults())
        return 0

    if args.print_config_schema:
        _emit_json(config_schema())
        return 0

    if args.validate_config:
        try:
            errors = validate_config_file(config_path)
        except ValueError as e:
            errors = [str(e)]
        for error in errors:
            print(error, file=sys.stderr)
        return 1 if errors else 0

    if args.print_hook_contract:
        _emit_json(HOOK_CONTRACT)
        return 0

    if args.print_resolved:
        _emit_json(config_to_dict(load_config(config_path=config_path)))
        return 0

    if args.print_event_catalog:
        _emit_json({"catalog": EVENT_CATALOG})
        return 0

    return None


def run_capture_loop(
    service: ScrollCaptureService,
    max_frames: int,
    interval_s: float,
    end_after_duplicates: int,
    should_stop: Callable[[], bool] = lambda: False,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Capture and stitch until scrolling ends.

    Stops after ``end_after_duplicates`` consecutive frames that add no
    rows, after ``max_frames`` stitched frames, or when ``should_stop``
    returns True. Capture failures are retried up to MAX_CAPTURE_RETRIES
    times in a row.

    Returns:
        Number of frames stitched

    Raises:
        CaptureFailed: If capture keeps failing
        ScrollCaptureError: For any other session error
    """
    stitched = 0
    duplicates = 0
    failures = 0

    while stitched < max_frames and not should_stop():
        try:
            frame = service.capture()
        except CaptureFailed as e:
            failures += 1
            if failures >= MAX_CAPTURE_RETRIES:
                raise
            log.warning("Capture failed (%d/%d): %s", failures, MAX_CAPTURE_RETRIES, e)
            sleep(interval_s)
            continue
        failures = 0

        result = service.handle_image(frame)
        stitched += 1
        if result.is_duplicate:
            duplicates += 1
            log.debug("No new rows (%d/%d)", duplicates, end_after_duplicates)
            if duplicates >= end_after_duplicates:
                log.info("Content stopped scrolling")
                break
        else:
            duplicates = 0
            width, height = service.get_size()
            log.debug("Frame %d: +%d rows, composite %dx%d",
                      stitched, frame.height - result.offset, width, height)

        sleep(interval_s)

    return stitched


def handle_scroll_capture(
    args: argparse.Namespace,
    config: Config,
    options: OutputOptions,
    service: Optional[ScrollCaptureService] = None,
    stop_event: Optional[threading.Event] = None,
) -> int:
    """Run one scroll capture from init to clear."""
    try:
        region = Region.parse(args.region)
    except ValueError as e:
        log.error("Invalid region: %s. Use X,Y,W,H (e.g., 100,100,800,600)", e)
        return 1

    if service is None:
        try:
            service = ScrollCaptureService.from_config(config)
        except ValueError as e:
            log.error("Invalid stitching config: %s", e)
            return 1
    stop_event = stop_event or threading.Event()
    interval_ms = args.interval if args.interval is not None else config.capture_interval_ms
    max_frames = args.max_frames if args.max_frames is not None else config.max_frames

    operation_id = _start_operation(region)
    try:
        service.init(region)
        capture_error = None
        try:
            frames = run_capture_loop(
                service,
                max_frames=max_frames,
                interval_s=interval_ms / 1000.0,
                end_after_duplicates=config.end_after_duplicates,
                should_stop=stop_event.is_set,
            )
        except CaptureFailed as e:
            # Keep what was stitched before capture broke
            if service.get_size()[1] == 0:
                raise
            capture_error = e
            frames = service.frame_count
            log.warning("Capture failed, saving %d rows stitched so far: %s",
                        service.get_size()[1], e)
        service.finish()

        result = service.save_to_file(
            resolve_output_path(options, config),
            image_format=options.output_format,
            quality=options.quality,
        )
        if options.clipboard:
            try:
                service.save_to_clipboard()
            except ScrollCaptureError as e:
                log.warning("Failed to copy to clipboard: %s", e)

        publish(result, options, config)
        log.debug("Stitched %d frames", frames)
        if capture_error is not None:
            emit("error.handled", {
                "error_type": type(capture_error).__name__,
                "message": str(capture_error),
                "operation": OPERATION_TYPE,
            })
            _complete_operation(operation_id, region, result=result,
                                error_message=str(capture_error))
            return 1
        _complete_operation(operation_id, region, result=result)
        return 0
    except ScrollCaptureError as e:
        emit("error.handled", {
            "error_type": type(e).__name__,
            "message": str(e),
            "operation": OPERATION_TYPE,
        })
        _complete_operation(operation_id, region, error_message=str(e))
        log.error("Scroll capture failed: %s", e)
        return 1
    finally:
        service.clear()


def _install_stop_handlers(stop_event: threading.Event) -> None:
    def _stop(signum, _frame):
        log.info("Stop requested (signal %d), finishing capture", signum)
        stop_event.set()

    signal.signal(STOP_SIGNAL, _stop)
    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_argument_parser()
    parsed_args = parser.parse_args(args)

    # Introspection flags short-circuit normal execution
    result = _handle_introspection(parsed_args)
    if result is not None:
        return result

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.debug else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    # Suppress stderr events in silent mode (scripting captures stderr)
    configure("scrollshot", stderr=not parsed_args.silent)
    atexit.register(lambda: emit("shutdown", {}))

    config_path = Path(parsed_args.config).expanduser() if parsed_args.config else None
    config = load_config(config_path=config_path)
    emit("config.resolved", {
        "config_path": str(config_path or "default"),
        "source": "cli" if config_path else "default",
    })

    instance_mgr = InstanceManager(config)

    if parsed_args.stop:
        if instance_mgr.signal_stop():
            return 0
        log.error("No scroll capture is running")
        return 1

    if not parsed_args.region:
        parser.error("--region is required (or use --stop)")

    instance_mgr.cleanup_stale_lock()
    if not instance_mgr.acquire_lock():
        log.error("Another scroll capture is running (use --stop to finish it)")
        return 1

    try:
        stop_event = threading.Event()
        _install_stop_handlers(stop_event)

        if parsed_args.delay:
            time.sleep(parsed_args.delay / 1000.0)

        options = build_output_options(parsed_args, config)
        return handle_scroll_capture(parsed_args, config, options, stop_event=stop_event)
    finally:
        instance_mgr.release_lock()


if __name__ == "__main__":
    sys.exit(main())
