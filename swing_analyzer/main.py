"""Swing analyzer CLI.

Subcommands:
    extract   run frame-accurate pose extraction on a video and save the poses
    detect    detect swings in saved poses
    history   replay saved poses through the stability filter and chart joint history
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Optional

from swing_analyzer.config.keypoints import Topology, get_topology, topology_for_size
from swing_analyzer.config.settings import AnalyzerConfig
from swing_analyzer.core.persistence import load_pose_map, save_pose_map
from swing_analyzer.core.types import PoseMap, StabilityState
from swing_analyzer.errors import SwingAnalyzerError


def load_config(path: Optional[str]) -> AnalyzerConfig:
    if not path:
        return AnalyzerConfig()
    with open(path, "r", encoding="utf-8") as f:
        return AnalyzerConfig.from_dict(json.load(f))


def resolve_topology(pose_map: PoseMap, config: AnalyzerConfig) -> Topology:
    """Topology matching the stored keypoint count, else the configured one."""
    for poses in pose_map.values():
        if poses:
            try:
                return topology_for_size(len(poses[0]))
            except ValueError:
                break
    return get_topology(config.topology)


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


# =====================================================================
# Commands
# =====================================================================

def run_extract(args, config: AnalyzerConfig) -> None:
    from swing_analyzer.core.extraction import ExtractionController
    from swing_analyzer.core.pose_estimator import PoseEstimator
    from swing_analyzer.core.video_processor import VideoMediaSource

    print(f"Loading video: {args.input}")
    with VideoMediaSource(args.input, auto_rotate=not args.no_rotate) as source:
        info = source.info
        print(f"  Container FPS: {info['fps']:.2f}")
        print(f"  Duration: {info['duration']:.2f}s ({info['total_frames']} frames)")
        if info["rotation"]:
            print(f"  Rotation: {info['rotation']}° (will correct)")

        print(f"\nLoading model: {args.model}")
        estimator = PoseEstimator(args.model, device=args.device, conf=args.confidence)
        print(f"  Device: {estimator.device}")

        def progress(percent: float) -> None:
            print(f"  Progress: {percent:.1f}%", end="\r")

        controller = ExtractionController(
            source, estimator, config=config.extraction, on_progress=progress
        )
        print("\nExtracting poses...")
        result = asyncio.run(controller.extract(fps=args.fps))

    if not result.ok:
        raise SwingAnalyzerError("Extraction was aborted")
    detected = sum(1 for poses in result.pose_map.values() if poses)
    print(f"\n\nExtracted {result.frames_processed} frames at {result.fps:.0f} fps "
          f"({detected} with a person, strategy: {result.strategy})")
    path = save_pose_map(args.output, result.pose_map, result.fps, result.model_id)
    print(f"Poses saved to: {path}")


def run_detect(args, config: AnalyzerConfig) -> None:
    from swing_analyzer.analysis.swing_detection import SwingDetector

    pose_map, fps, model_id = load_pose_map(args.input)
    topology = resolve_topology(pose_map, config)
    result = SwingDetector(config.swing, topology).detect(pose_map, fps)

    if args.json:
        print(json.dumps(_jsonable(asdict(result)), indent=2))
    else:
        print(f"Poses: {args.input} ({model_id}, {fps:.0f} fps, {result.frames_analyzed} frames)")
        if not result.ok:
            print(f"Swing detection failed: {result.error}")
        else:
            print(f"Gaps: {result.frames_with_gaps}  threshold: {result.threshold:.1f} px/frame")
            print(f"Detected {result.total_swings} swing(s)")
            for n, swing in enumerate(result.swings, 1):
                print(
                    f"  {n}. frame {swing.frame} ({swing.timestamp_s:.2f}s)  "
                    f"{swing.dominant_side.value:<5}  {swing.estimated_speed_kmh:6.1f} km/h  "
                    f"confidence {swing.confidence:.2f}"
                )

    if args.plot and result.ok:
        from swing_analyzer.reporting.charts import ChartGenerator

        out = ChartGenerator.velocity_chart(result, args.plot)
        if out:
            print(f"Chart saved to: {out}")

    if not result.ok:
        raise SwingAnalyzerError(result.error)


def run_history(args, config: AnalyzerConfig) -> None:
    from swing_analyzer.analysis.session import PoseAnalysisSession
    from swing_analyzer.reporting.charts import ChartGenerator

    pose_map, fps, _model_id = load_pose_map(args.input)
    session = PoseAnalysisSession(config, resolve_topology(pose_map, config))

    corrupted = 0
    recovery = 0
    for frame in sorted(pose_map):
        t = frame / fps
        analysis = session.process_frame(pose_map[frame], frame, t, now=t)
        corrupted += any(r.is_corrupted for r in analysis.stability)
        recovery += analysis.state is StabilityState.RECOVERY
    print(f"Replayed {len(pose_map)} frames: {corrupted} corrupted, {recovery} in recovery")

    plot_dir = Path(args.plot_dir)
    charts = [
        ChartGenerator.segment_chart(session.history, str(plot_dir / "segments.png")),
        ChartGenerator.angle_chart(session.history, str(plot_dir / "angles.png")),
        ChartGenerator.acceleration_chart(session.history, str(plot_dir / "acceleration.png")),
    ]
    for chart in charts:
        if chart:
            print(f"Chart saved to: {chart}")


# =====================================================================
# Entry point
# =====================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swing-analyze",
        description="Swing Analyzer - frame-accurate pose extraction and swing detection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  swing-analyze extract input.mp4 -o poses.json
  swing-analyze detect poses.json --plot velocity.png
  swing-analyze history poses.json --plot-dir charts/
        """
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    common.add_argument("--config", default=None, help="JSON file overriding configuration defaults")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("extract", parents=[common], help="Extract poses from a video")
    p.add_argument("input", help="Input video file path")
    p.add_argument("-o", "--output", required=True, help="Output pose file (.json)")
    p.add_argument("-m", "--model", default="yolo11m-pose.pt", help="YOLO pose model")
    p.add_argument("-d", "--device", default="auto", choices=["auto", "cpu", "cuda", "mps"])
    p.add_argument("-c", "--confidence", type=float, default=0.5)
    p.add_argument("--fps", type=float, default=None, help="Known frame rate (skips measurement)")
    p.add_argument("--no-rotate", action="store_true", help="Ignore rotation metadata")

    p = sub.add_parser("detect", parents=[common], help="Detect swings in saved poses")
    p.add_argument("input", help="Pose file written by 'extract'")
    p.add_argument("--plot", default=None, help="Write a velocity chart to this path")
    p.add_argument("--json", action="store_true", help="Print the full result as JSON")

    p = sub.add_parser("history", parents=[common], help="Chart joint history of saved poses")
    p.add_argument("input", help="Pose file written by 'extract'")
    p.add_argument("--plot-dir", required=True, help="Directory for the charts")
    return parser


COMMANDS = {
    "extract": run_extract,
    "detect": run_detect,
    "history": run_history,
}


def main(argv=None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
        COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(1)
    except (SwingAnalyzerError, FileNotFoundError, ValueError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
