"""Entry point for sampling a video stream for potential but unreadable QR codes."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from .config.settings import AnalyzerSettings, load_settings
from .services.detector import OpenCVVisionBackend, VisionBackend
from .services.gatekeeper import FrameGatekeeper
from .services.orchestrator import DetectionOrchestrator, ResultCallback
from .services.quality import QualityCheckPolicy, RegionQualityEstimator
from .utils.video import FrameReader, is_live_source, open_capture, parse_source

LOGGER = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Detect potential but unreadable QR codes in a video stream")
    parser.add_argument("--source", type=str, default="0", help="Video source path or device index")
    parser.add_argument("--config", type=str, default=None, help="Analyzer configuration YAML file")
    parser.add_argument("--cooldown", type=float, default=None, help="Seconds between analysed frames")
    parser.add_argument(
        "--literal-cooldown",
        action="store_true",
        help="Never re-arm the cooldown after the first accepted frame (legacy behaviour)",
    )
    parser.add_argument("--max-in-flight", type=int, default=None, help="Concurrent analyses before frames are dropped")
    parser.add_argument("--unbounded", action="store_true", help="Do not cap concurrent analyses")
    parser.add_argument("--quality-checks", action="store_true", help="Run size and contour quality checks")
    parser.add_argument("--blur-threshold", type=float, default=None, help="Minimum contour score for a sharp code")
    parser.add_argument("--process-every", type=int, default=None, help="Read only every Nth frame")
    parser.add_argument("--max-frames", type=int, default=None, help="Stop after this many frames")
    parser.add_argument("--log-format", choices=["text", "json"], default=None, help="Logging format")
    parser.add_argument("--verbose", action="store_true", help="Log per-candidate diagnostics")
    return parser


def setup_logging(settings: AnalyzerSettings, verbose: bool = False) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    if settings.log_format == "json":
        formatter = logging.Formatter('{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}')
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=log_level, handlers=[handler])


def resolve_settings(args: argparse.Namespace) -> AnalyzerSettings:
    overrides = {}
    if args.cooldown is not None:
        overrides["cooldown_seconds"] = args.cooldown
    if args.literal_cooldown:
        overrides["rearm_cooldown"] = False
    if args.max_in_flight is not None:
        overrides["max_in_flight"] = args.max_in_flight
    if args.unbounded:
        overrides["max_in_flight"] = None
    if args.quality_checks:
        overrides["enable_quality_checks"] = True
    if args.blur_threshold is not None:
        overrides["blur_threshold"] = args.blur_threshold
    if args.process_every:
        overrides["process_every_n_frames"] = args.process_every
    if args.log_format:
        overrides["log_format"] = args.log_format

    config_path = Path(args.config) if args.config else None
    return load_settings(config_path, **overrides)


def build_orchestrator(
    settings: AnalyzerSettings,
    backend: VisionBackend,
    on_result: Optional[ResultCallback] = None,
) -> DetectionOrchestrator:
    policy = None
    if settings.enable_quality_checks:
        estimator = RegionQualityEstimator(backend, settings.contour_config())
        policy = QualityCheckPolicy(
            estimator,
            minimum_size=settings.minimum_region_size,
            blur_threshold=settings.blur_threshold,
        )
    return DetectionOrchestrator(
        backend,
        settings.rectangle_config(),
        policy=policy,
        on_result=on_result,
        max_in_flight=settings.max_in_flight,
    )


async def process_video_stream(
    video_source: str | int,
    settings: AnalyzerSettings,
    gatekeeper: FrameGatekeeper,
    orchestrator: DetectionOrchestrator,
    *,
    max_frames: Optional[int] = None,
) -> int:
    """Feed frames through the gatekeeper and return how many were submitted."""

    submitted = 0
    with open_capture(video_source) as capture:
        reader = FrameReader(
            capture,
            live=is_live_source(video_source),
            process_every=settings.process_every_n_frames,
        )
        while True:
            frame = await reader.read_async()
            if frame is None:
                break
            image = gatekeeper.admit(frame.data, frame.timestamp)
            # A frame dropped as busy must not use up the cooldown window.
            if image is not None and orchestrator.submit(image, frame.index, frame.timestamp):
                gatekeeper.mark_accepted(frame.timestamp)
                submitted += 1
            if max_frames is not None and frame.index >= max_frames:
                LOGGER.info("Frame limit %d reached", max_frames)
                break
    await orchestrator.drain()
    return submitted


def run_analysis(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    setup_logging(settings, verbose=args.verbose)

    LOGGER.info("Starting QR frame analysis")
    backend = OpenCVVisionBackend()
    gatekeeper = FrameGatekeeper(settings.cooldown_seconds, rearm_on_accept=settings.rearm_cooldown)
    orchestrator = build_orchestrator(settings, backend)

    submitted = asyncio.run(
        process_video_stream(
            parse_source(args.source),
            settings,
            gatekeeper,
            orchestrator,
            max_frames=args.max_frames,
        )
    )

    LOGGER.info(
        "QR frame analysis completed | submitted=%d | completed=%d | failed=%d | dropped=%d",
        submitted,
        orchestrator.completed_count,
        orchestrator.failed_count,
        orchestrator.dropped_count,
    )
    return 0


def main() -> None:
    parser = build_arg_parser()
    args = parser.parse_args()

    def handle_interrupt(signum: int, frame: Optional[object]) -> None:  # pragma: no cover - signal handling
        LOGGER.warning("Received interrupt signal (%d), shutting down", signum)
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_interrupt)
    sys.exit(run_analysis(args))


if __name__ == "__main__":  # pragma: no cover
    main()
