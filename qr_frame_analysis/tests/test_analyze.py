from __future__ import annotations

import asyncio
import threading
from contextlib import contextmanager
from typing import List

import cv2
import numpy as np

from qr_frame_analysis.app import analyze
from qr_frame_analysis.app.config.settings import AnalyzerSettings
from qr_frame_analysis.app.models import AnalysisResult, BarcodeCandidate, BoundingBox, CandidateStatus
from qr_frame_analysis.app.services.gatekeeper import FrameGatekeeper
from qr_frame_analysis.app.services.quality import QualityCheckPolicy


class DummyBackend:
    def __init__(self) -> None:
        self.barcode_calls = 0

    def detect_barcodes(self, image):
        self.barcode_calls += 1
        return [BarcodeCandidate("qr", 1.0, BoundingBox(0.1, 0.1, 0.05, 0.05))]

    def detect_rectangles(self, image, config):
        return []

    def detect_contours(self, image, config):
        return None


class FakeCapture:
    """Capture whose media position follows ``positions_ms``."""

    def __init__(self, positions_ms: List[float]) -> None:
        self.positions_ms = positions_ms
        self.read_count = 0
        self.read_threads: List[int] = []

    def read(self):
        self.read_threads.append(threading.get_ident())
        if self.read_count >= len(self.positions_ms):
            return False, None
        self.read_count += 1
        return True, np.zeros((24, 24, 3), dtype=np.uint8)

    def get(self, prop):
        if prop == cv2.CAP_PROP_POS_MSEC and self.read_count:
            return self.positions_ms[self.read_count - 1]
        return 0.0


def fake_stream(monkeypatch, positions_ms: List[float]) -> tuple[list, FakeCapture]:
    opened: list = []
    capture = FakeCapture(positions_ms)

    @contextmanager
    def fake_open_capture(source):
        opened.append(source)
        yield capture

    monkeypatch.setattr(analyze, "open_capture", fake_open_capture)
    return opened, capture


class ScriptedOrchestrator:
    def __init__(self, outcomes: List[bool]) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[int] = []

    def submit(self, image, frame_index: int = 0, timestamp: float = 0.0) -> bool:
        self.calls.append(frame_index)
        return self.outcomes.pop(0)

    async def drain(self) -> None:
        return None


def test_resolve_settings_from_arguments(tmp_path) -> None:
    config_path = tmp_path / "analyzer.yaml"
    config_path.write_text("cooldown_seconds: 0.4\n")
    parser = analyze.build_arg_parser()
    args = parser.parse_args(
        ["--config", str(config_path), "--literal-cooldown", "--unbounded", "--quality-checks", "--blur-threshold", "0.3"]
    )

    settings = analyze.resolve_settings(args)

    assert settings.cooldown_seconds == 0.4
    assert settings.rearm_cooldown is False
    assert settings.max_in_flight is None
    assert settings.enable_quality_checks is True
    assert settings.blur_threshold == 0.3


def test_build_orchestrator_wires_policy_only_when_enabled() -> None:
    backend = DummyBackend()
    assert analyze.build_orchestrator(AnalyzerSettings(), backend).policy is None

    settings = AnalyzerSettings(enable_quality_checks=True, blur_threshold=0.1, max_in_flight=2)
    orchestrator = analyze.build_orchestrator(settings, backend)
    assert isinstance(orchestrator.policy, QualityCheckPolicy)
    assert orchestrator.policy.blur_threshold == 0.1
    assert orchestrator.max_in_flight == 2


def test_process_video_stream_samples_by_cooldown(monkeypatch) -> None:
    opened, _ = fake_stream(monkeypatch, [40.0, 90.0, 290.0])
    settings = AnalyzerSettings(cooldown_seconds=0.2, max_in_flight=None, enable_quality_checks=True)
    backend = DummyBackend()
    results: List[AnalysisResult] = []
    orchestrator = analyze.build_orchestrator(settings, backend, on_result=results.append)
    gatekeeper = FrameGatekeeper(settings.cooldown_seconds, rearm_on_accept=settings.rearm_cooldown)

    submitted = asyncio.run(analyze.process_video_stream("clip.mp4", settings, gatekeeper, orchestrator))

    assert opened == ["clip.mp4"]
    assert submitted == 2
    assert sorted(result.frame_index for result in results) == [1, 3]
    assert all(result.verdicts[0].status is CandidateStatus.TOO_SMALL for result in results)
    assert orchestrator.in_flight == 0


def test_process_video_stream_respects_frame_limit(monkeypatch) -> None:
    fake_stream(monkeypatch, [40.0, 90.0, 290.0, 600.0])
    settings = AnalyzerSettings(cooldown_seconds=0.0, max_in_flight=None)
    backend = DummyBackend()
    orchestrator = analyze.build_orchestrator(settings, backend)
    gatekeeper = FrameGatekeeper(settings.cooldown_seconds)

    submitted = asyncio.run(
        analyze.process_video_stream(0, settings, gatekeeper, orchestrator, max_frames=2)
    )

    assert submitted == 2
    assert backend.barcode_calls == 2


def test_run_analysis_smoke(monkeypatch) -> None:
    opened, _ = fake_stream(monkeypatch, [40.0, 90.0, 290.0])
    monkeypatch.setattr(analyze, "OpenCVVisionBackend", DummyBackend)
    args = analyze.build_arg_parser().parse_args(["--source", "2", "--cooldown", "0.1"])

    assert analyze.run_analysis(args) == 0
    assert opened == [2]


def test_busy_drop_does_not_consume_cooldown(monkeypatch) -> None:
    fake_stream(monkeypatch, [40.0, 100.0, 350.0])
    settings = AnalyzerSettings(cooldown_seconds=0.2)
    gatekeeper = FrameGatekeeper(settings.cooldown_seconds)
    orchestrator = ScriptedOrchestrator([False, True, True])

    submitted = asyncio.run(analyze.process_video_stream("clip.mp4", settings, gatekeeper, orchestrator))

    assert orchestrator.calls == [1, 2, 3]
    assert submitted == 2
    assert gatekeeper.last_accepted == 0.35


def test_frames_are_read_off_the_event_loop_thread(monkeypatch) -> None:
    _, capture = fake_stream(monkeypatch, [40.0, 90.0])
    settings = AnalyzerSettings(cooldown_seconds=0.0, max_in_flight=None)
    orchestrator = analyze.build_orchestrator(settings, DummyBackend())
    gatekeeper = FrameGatekeeper(settings.cooldown_seconds)

    asyncio.run(analyze.process_video_stream("clip.mp4", settings, gatekeeper, orchestrator))

    assert len(capture.read_threads) == 3
    assert threading.get_ident() not in capture.read_threads
